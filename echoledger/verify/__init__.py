# echoledger/verify/__init__.py
