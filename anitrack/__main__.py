import asyncio

from anitrack.cli import main

if __name__ == "__main__":
    asyncio.run(main())
