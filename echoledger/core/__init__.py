# echoledger/core/__init__.py
