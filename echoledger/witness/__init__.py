# echoledger/witness/__init__.py
