"""
Generate a VAPID key pair for Web Push.

Usage:
    python -m weatherpush.scripts.generate_vapid_keys
    python -m weatherpush.scripts.generate_vapid_keys --subject mailto:ops@example.com
"""

import argparse

from weatherpush.push.vapid import generate_vapid_keys


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Generate a VAPID key pair for Web Push")
    parser.add_argument("--subject", "-s", help="Contact URI to print as VAPID_SUBJECT (mailto: or https:)")
    args = parser.parse_args(argv)

    keys = generate_vapid_keys()
    print("Add these to your .env file:\n")
    print(f"VAPID_PUBLIC_KEY={keys['public_key']}")
    print(f"VAPID_PRIVATE_KEY={keys['private_key']}")
    if args.subject:
        print(f"VAPID_SUBJECT={args.subject}")


if __name__ == "__main__":
    main()
