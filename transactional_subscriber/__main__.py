"""
Runs the sample application: python -m transactional_subscriber
"""

import asyncio

from transactional_subscriber.core.logging import setup_logging
from transactional_subscriber.sample import run_sample


def main():
    """Run the sample and print the committed event log."""
    setup_logging()
    entries = asyncio.run(run_sample())
    for entry in entries:
        print(entry)


if __name__ == "__main__":
    main()
