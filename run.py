#!/usr/bin/env python3
"""Runner for source checkouts"""
import os
from rotabackup.cli import main

if __name__ == '__main__':
    # Use development config for local testing unless told otherwise
    os.environ.setdefault('ROTABACKUP_ENV', 'development')
    main()
