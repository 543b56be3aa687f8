#!/usr/bin/env python3
# Copyright 2026 Firefly Software Solutions Inc
# Licensed under the Apache License, Version 2.0
"""
Basic SteadyBrowser Usage Example

This example walks through the core operations of the engine:
- Navigating with render-stability waits and blank-page detection
- Taking a snapshot and acting on element references
- Extracting readable content
- Searching without moving the active page

Every operation returns an OperationResult; printing it gives the same
report an agent would read.

Run with: python examples/01_basic_usage.py
"""

import asyncio
import os

from steadybrowser import BrowserEngine, EngineConfig


async def main():
    """Demonstrate basic SteadyBrowser usage."""
    print("=" * 60)
    print("SteadyBrowser Basic Usage Example")
    print("=" * 60)

    config = EngineConfig(
        data_dir=os.path.expanduser("~/.steadybrowser-demo"),
        profile_name="demo",
    )

    async with BrowserEngine(config) as engine:
        print("\n[1] Navigating to example.com...")
        result = await engine.navigate("example.com")
        print(f"    {result}")

        print("\n[2] Taking a snapshot...")
        snapshot = await engine.snapshot()
        print(snapshot)

        # Element references come from the snapshot and die on the next page load
        print("\n[3] Clicking the first link by reference...")
        result = await engine.click(1)
        print(f"    {result}")

        print("\n[4] Extracting readable content...")
        content = await engine.extract_content(max_chars=1500)
        print(content)

        print("\n[5] Searching (runs in an isolated page)...")
        search = await engine.search("python asyncio tutorial")
        print(search)

        print("\n[6] Engine state...")
        print(await engine.get_state_summary())

    print("\n" + "=" * 60)
    print("Example completed!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
