#!/usr/bin/env python3
"""
CLI utility for the encrypted per-environment config read by marketplace_ops.

Usage:
    python manage_secrets.py generate-key
    python manage_secrets.py encrypt <value> [--key <key>]
    python manage_secrets.py decrypt <value> [--key <key>]
    python manage_secrets.py store <NAME> (--value <value> | --file <path>) [--env local]

``store`` writes the encrypted value under ``secrets.NAME`` in
``<env>-config.yml``; e.g. store FIREBASE_CREDENTIALS_JSON --file serviceAccountKey.json
"""

import argparse
import os
import sys
from pathlib import Path

import yaml
from cryptography.fernet import Fernet, InvalidToken
from dotenv import load_dotenv

load_dotenv(".env")


def _cipher(key=None) -> Fernet:
    key = key or os.getenv("MASTER_KEY")
    if not key:
        print("Error: No MASTER_KEY found in environment or provided as argument.")
        sys.exit(1)
    return Fernet(key.encode())


def generate_key():
    key = Fernet.generate_key()
    print(f"Generated MASTER_KEY: {key.decode()}")
    print("\nAdd this to your .env file as:")
    print(f"MASTER_KEY={key.decode()}")


def encrypt_value(value, key=None) -> str:
    return _cipher(key).encrypt(value.encode()).decode()


def decrypt_value(value, key=None) -> str:
    try:
        return _cipher(key).decrypt(value.encode()).decode()
    except InvalidToken:
        print("Decryption failed: wrong MASTER_KEY or corrupted value")
        sys.exit(1)


def store_secret(name, value, env="local", key=None) -> Path:
    path = Path(f"{env}-config.yml")
    config = {}
    if path.exists():
        with open(path, "r") as f:
            config = yaml.safe_load(f) or {}

    config.setdefault("secrets", {})[name] = encrypt_value(value, key)

    with open(path, "w") as f:
        yaml.safe_dump(config, f, sort_keys=True)
    return path


def main():
    parser = argparse.ArgumentParser(description="Manage encrypted secrets")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("generate-key", help="Generate a new MASTER_KEY")

    encrypt_parser = subparsers.add_parser("encrypt", help="Encrypt a string")
    encrypt_parser.add_argument("value", help="Value to encrypt")
    encrypt_parser.add_argument("--key", help="MASTER_KEY to use (optional if in env)")

    decrypt_parser = subparsers.add_parser("decrypt", help="Decrypt a string")
    decrypt_parser.add_argument("value", help="Value to decrypt")
    decrypt_parser.add_argument("--key", help="MASTER_KEY to use (optional if in env)")

    store_parser = subparsers.add_parser("store", help="Encrypt a value into <env>-config.yml")
    store_parser.add_argument("name", help="Settings field name, e.g. FIREBASE_CREDENTIALS_JSON")
    source = store_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--value", help="Plain value")
    source.add_argument("--file", help="Read the value from this file")
    store_parser.add_argument("--env", default=os.getenv("ENVIRONMENT", "local"))
    store_parser.add_argument("--key", help="MASTER_KEY to use")

    args = parser.parse_args()

    if args.command == "generate-key":
        generate_key()
    elif args.command == "encrypt":
        print(f"Encrypted value:\n{encrypt_value(args.value, args.key)}")
    elif args.command == "decrypt":
        print(f"Decrypted value:\n{decrypt_value(args.value, args.key)}")
    elif args.command == "store":
        if args.file:
            with open(args.file, "r") as f:
                value = f.read()
        else:
            value = args.value
        path = store_secret(args.name, value, env=args.env, key=args.key)
        print(f"Stored encrypted {args.name} in {path}")
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
