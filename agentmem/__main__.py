"""
Entry point for python -m agentmem

Forces unbuffered stdout/stderr on Windows to prevent MCP stdio hanging.
"""
import sys
import os

# Force unbuffered output BEFORE importing anything else
if sys.platform == 'win32':
    import io
    sys.stdout = io.TextIOWrapper(
        open(sys.stdout.fileno(), 'wb', buffering=0),
        write_through=True
    )
    sys.stderr = io.TextIOWrapper(
        open(sys.stderr.fileno(), 'wb', buffering=0),
        write_through=True
    )
    os.environ['PYTHONUNBUFFERED'] = '1'

from agentmem.server import main

if __name__ == '__main__':
    main()
