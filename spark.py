#!/usr/bin/env python3
"""
Spark - interactive update dashboard for developer tools.

Usage:
    spark.py                 # Interactive dashboard
    spark.py --list          # Probe once and print a table
    spark.py --config FILE   # Use a specific configuration file
"""

from spark_update.cli import run

if __name__ == "__main__":
    run()
