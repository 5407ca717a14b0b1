# echoledger/cli/__init__.py
