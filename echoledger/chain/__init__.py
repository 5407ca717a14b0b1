# echoledger/chain/__init__.py
