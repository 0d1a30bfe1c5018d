#!/usr/bin/env python3
"""
IMAP mail reader: marks every unseen message in INBOX as read.

Requirements: Python 3.9+, python-dotenv.
Usage:
  1) Set IMAP_SERVER, IMAP_PORT, IMAP_EMAIL and IMAP_PASSWORD (or put them in .env)
  2) Optionally adjust settings in config.json
  3) Run: python imap_reader_cli.py --chunk-size 10 --pool-size 5
"""

import sys
from imap_reader.cli import main

if __name__ == "__main__":
    sys.exit(main())
