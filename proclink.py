#!/usr/bin/env python
"""
ProcLink - Process Connection Graph

Correlates the open sockets, pipes and files of every process on a host
into a graph of which processes talk to each other, to external hosts,
and to shared files.

Usage:
    python proclink.py [OPTIONS]

Examples:
    python proclink.py
    python proclink.py --pid 1234 --files
    python proclink.py --source psutil --export graph.json

Requirements:
    - Linux or macOS with lsof (or psutil as the source)
    - Python 3.9+
    - root privileges to see other users' processes
    - pip install -e .
"""

import sys

from linkcore.cli import main

if __name__ == "__main__":
    sys.exit(main())
