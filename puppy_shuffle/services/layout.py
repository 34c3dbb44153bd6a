"""Puppy layouts: slot assignment and single-swap shuffling."""

from __future__ import annotations

import random
from dataclasses import dataclass, replace

SLOT_SPAN_START = 15.0
SLOT_SPAN_END = 85.0


@dataclass(frozen=True, slots=True)
class Dog:
    id: int
    slot: int


Layout = tuple[Dog, ...]


def dog_count(stage: int) -> int:
    return 5 if stage >= 5 else 3


def create_layout(count: int) -> Layout:
    if count <= 0:
        raise ValueError(f"layout needs at least one dog, got {count}")
    return tuple(Dog(id=index + 1, slot=index) for index in range(count))


def shuffle_once(layout: Layout, rng: random.Random | None = None) -> Layout:
    """Swap the slots of two distinct, randomly chosen dogs.

    Dog ids keep their position in the tuple; only slot values move, so a
    layout stays a bijection between ids and slots after every call.
    """
    if len(layout) < 2:
        return layout

    rng = rng or random
    first = rng.randrange(len(layout))
    second = rng.randrange(len(layout))
    while second == first:
        second = rng.randrange(len(layout))

    dogs = list(layout)
    dogs[first] = replace(layout[first], slot=layout[second].slot)
    dogs[second] = replace(layout[second], slot=layout[first].slot)
    return tuple(dogs)


def slot_positions(count: int) -> list[float]:
    if count <= 1:
        return [50.0]

    gap = (SLOT_SPAN_END - SLOT_SPAN_START) / (count - 1)
    return [round(SLOT_SPAN_START + gap * index, 2) for index in range(count)]


def find_dog(layout: Layout, dog_id: int | None) -> Dog | None:
    for dog in layout:
        if dog.id == dog_id:
            return dog
    return None
