"""
example_usage.py

Example demonstrating the heap dump library features.
This script builds a small game world, dumps its statics and live instances,
and walks through the report and its summary.
"""

import ctypes
import enum
import io
import logging
import sys

from heap_dump import (
    HeapDump,
    IdentityInspector,
    InstanceRoot,
    dump_config,
    dump_to_string,
)
from heap_report import load_report, summarize_report
from heap_roots import live_instances, module_types


class Team(enum.IntEnum):
    RED = 0
    BLUE = 1


class Vector3(ctypes.Structure):
    _fields_ = [("x", ctypes.c_float), ("y", ctypes.c_float), ("z", ctypes.c_float)]


class Entity:
    """Something living in the world, identified by name."""

    def __init__(self, name):
        self.name = name
        self.destroyed = False


class Player(Entity):
    MAX_HEALTH = 100

    def __init__(self, name, team):
        super().__init__(name)
        self.team = team
        self.health = Player.MAX_HEALTH
        self.position = Vector3(0.0, 1.0, 0.0)
        self.inventory = ["sword", "shield"]
        self.target = None


class World:
    registry = {}

    def __init__(self):
        self.players = []
        self.grid = ((ctypes.c_uint8 * 16) * 16)()
        self.log = bytearray(256)


def main():
    """Run example."""
    print("=" * 70)
    print("Heap Dump Library - Example")
    print("=" * 70)
    print()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    # Configure dumping
    dump_config.skip_empty_types = False

    # Build the world
    world = World()
    alice = Player("alice", Team.RED)
    bob = Player("bob", Team.BLUE)
    alice.target = bob
    bob.target = alice
    bob.inventory = alice.inventory
    world.players.extend([alice, bob])
    World.registry["main"] = world

    print("Step 1: Dumping statics and the world instance...")
    this_module = sys.modules[__name__]
    inspector = IdentityInspector((Entity,), is_alive=lambda e: not e.destroyed)
    text, result = dump_to_string(
        types=module_types(this_module),
        instances=[InstanceRoot(world, "world")],
        inspector=inspector,
    )
    print(text)
    print(f"Total size: {result.total_size} bytes, "
          f"{result.visited_count} objects, {result.error_count} errors")
    print("\n" + "=" * 70 + "\n")

    print("Step 2: Summary of the report...")
    summary = summarize_report(load_report(io.StringIO(text)))
    summary.print()
    print("\n" + "=" * 70 + "\n")

    print("Step 3: Destroying bob and dumping all live players...")
    bob.destroyed = True
    stream = io.StringIO()
    result = HeapDump(inspector=inspector).dump(stream, instances=live_instances(Player))
    print(stream.getvalue())
    print(f"Total size: {result.total_size} bytes")
    print("\n" + "=" * 70 + "\n")

    print("=" * 70)
    print("Example completed successfully!")
    print("=" * 70)


if __name__ == "__main__":
    main()
