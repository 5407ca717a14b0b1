# echoledger/crypto/__init__.py
