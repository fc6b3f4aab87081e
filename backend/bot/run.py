"""
Discord bot launcher
"""

import asyncio
import logging
import sys
from pathlib import Path

# Put backend/ on the path when run as a script
backend_dir = Path(__file__).resolve().parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))


def run() -> None:
    from bot.client import main

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.getLogger("rolegate_bot").info("Bot stopped manually")


if __name__ == "__main__":
    run()
