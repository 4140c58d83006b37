#!/usr/bin/env python3
"""Local runner"""
import os
from vault_backup.cli import main

if __name__ == '__main__':
    # Use development config for local testing
    os.environ.setdefault('BACKUP_ENV', 'development')

    main()
