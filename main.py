"""
Salon scheduler entry point.

Usage:
    python main.py init-db
    python main.py slots --resource salon-1 --service haircut --date 2025-03-17
    python main.py --help
"""

from salon_scheduler.cli import main

if __name__ == "__main__":
    main()
