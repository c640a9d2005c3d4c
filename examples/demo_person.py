#!/usr/bin/env python3
"""
Demo: Person record with a nested address.

This demonstrates structured generation with:
- A Pydantic model with a nested model and an optional field
- An enum constrained to a fixed set of values
- A plain JSON Schema dict for comparison

Usage:
    python examples/demo_person.py models/qwen2.5-1.5b-instruct-q4.gguf
"""

import json
import sys
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from pyllm import LLM, SamplingParams, Template


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"
    GUEST = "guest"


class Address(BaseModel):
    city: str
    zipcode: Optional[str] = None


class Person(BaseModel):
    name: str
    age: int
    role: Role
    address: Address
    hobbies: List[str] = []


def main():
    model = sys.argv[1] if len(sys.argv) > 1 else "TinyLlama/TinyLlama-1.1B-Chat-v1.0"

    print("=" * 60)
    print("pyllm Demo: Person Record with Nested Fields")
    print("=" * 60)

    print("\nSchema:")
    print(json.dumps(Person.model_json_schema(), indent=2))

    print("\n" + "=" * 60)
    print("Loading Model...")
    print("=" * 60)

    llm = LLM.from_pretrained(
        model,
        template=Template.chatml("You are a helpful assistant."),
        sampling=SamplingParams(seed=7, temperature=0.3),
        max_token_count=1024
    )

    print("✓ Model loaded")

    prompts = [
        "Generate a person named Alice, age 28, living in NYC with hobbies reading and hiking",
        "Create an admin profile for Bob Smith, 35 years old, residing in San Francisco",
        "Make a guest record for Charlie, age 42"
    ]

    for i, prompt in enumerate(prompts, 1):
        print("\n" + "=" * 60)
        print(f"Test {i}/{len(prompts)}")
        print("=" * 60)
        print(f"Prompt: {prompt}")

        result = llm.generate(prompt, Person)
        person = result.value

        print(f"\nLatency: {result.latency_ms:.0f}ms")
        print(f"Tokens: {result.tokens_generated}")
        print(f"\nRaw JSON: {result.raw_json}")

        print("\nField Analysis:")
        print(f"  Name: {person.name}")
        print(f"  Age: {person.age}")
        print(f"  Role: {person.role.value}")
        print(f"  City: {person.address.city}")
        if person.hobbies:
            print(f"  Hobbies: {', '.join(person.hobbies)}")

    metrics = llm.monitor.current_metrics
    if metrics is not None:
        print(f"\nLast run: {metrics.tokens_per_second:.1f} tok/s, {metrics.memory_usage / 1024 / 1024:.0f} MB")

    print("\n" + "=" * 60)
    print("Demo Complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
