"""
Wrapper to run the aish CLI from a source checkout.

Usage:
  python main.py "find pdf files larger than 10MB"
  python main.py -y --json --max-tries 1 "show current date"
"""

from aish import main


if __name__ == "__main__":
    raise SystemExit(main())
