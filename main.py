#!/usr/bin/env python3
"""
Session Blocker - Block distracting websites and applications for a focus session.

Domains are redirected to 127.0.0.1 through a marked block in the system hosts
file and blocked applications are force-quit while the session runs. A one-time
setup installs a narrowly scoped helper so later sessions need no password.

Usage:
    python main.py setup                                   # One-time elevation
    python main.py start --duration 50 -d youtube.com -a Discord
    python main.py start --duration 25 --block-list ~/focus.txt --daemon
    python main.py unlock                                  # Emergency unlock
"""

import sys

from session_blocker.utils.daemon import main

if __name__ == "__main__":
    sys.exit(main())
