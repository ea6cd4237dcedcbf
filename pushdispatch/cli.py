#!/usr/bin/env python3
"""
Push Dispatch Command Line Interface

Main entry point for the `pushdispatch` command.

Usage:
    pushdispatch generate-keys
    pushdispatch public-key
    pushdispatch subscribe --owner alice --file subscription.json
    pushdispatch unsubscribe --endpoint https://push.example.net/abc
    pushdispatch send --owner alice --title "Hello" --topic chat-42 --ttl 60
    pushdispatch prune
    pushdispatch --version
"""

import argparse
import asyncio
import json
import sys

from pushdispatch import __version__
from pushdispatch.config import build_keypair, load_config
from pushdispatch.errors import InvalidSubscription, PushDispatchError, SubscriptionNotFound
from pushdispatch.logging_config import setup_logging
from pushdispatch.models import Message, Subscription, Urgency
from pushdispatch.push.vapid import generate_vapid_keys, public_key_from_private
from pushdispatch.queue.scheduler import DeliveryScheduler
from pushdispatch.store import create_store


def cmd_generate_keys(args):
    """Generate a new VAPID key pair and print it as env settings."""
    result = generate_vapid_keys()
    print("VAPID Keys Generated Successfully")
    print("-" * 40)
    print(f"Public Key:  {result['public_key']}")
    print(f"Private Key: {result['private_key']}")
    print("-" * 40)
    print("\nAdd to your .env file:")
    print(f"VAPID_PUBLIC_KEY={result['public_key']}")
    print(f"VAPID_PRIVATE_KEY={result['private_key']}")
    print("VAPID_SUBJECT=mailto:notifications@yourdomain.com")


def cmd_public_key(args):
    """Print the applicationServerKey browsers subscribe with."""
    config = load_config(args.config)
    if config.vapid.public_key:
        print(config.vapid.public_key)
        return 0
    if not config.vapid.private_key:
        print("VAPID key not configured")
        print("Run: pushdispatch generate-keys")
        return 1
    print(public_key_from_private(config.vapid.private_key))
    return 0


def cmd_subscribe(args):
    """Register a browser PushSubscription (JSON from subscription.toJSON())."""
    config = load_config(args.config)
    try:
        with open(args.file) as f:
            payload = json.load(f)
        subscription = Subscription.from_payload(args.owner, payload)
    except (OSError, json.JSONDecodeError, InvalidSubscription) as e:
        print(f"Error: {e}")
        return 1

    store = create_store(config)
    asyncio.run(store.put(subscription))
    print(f"Subscribed {subscription.id} for {args.owner}")
    return 0


def cmd_unsubscribe(args):
    """Remove every subscription registered for an endpoint."""
    config = load_config(args.config)
    store = create_store(config)
    try:
        removed = asyncio.run(store.invalidate(args.endpoint))
    except SubscriptionNotFound:
        print("No subscription found for that endpoint")
        return 1
    print(f"Removed {removed} subscription(s)")
    return 0


def cmd_prune(args):
    """Delete subscriptions whose expiration time has passed."""
    config = load_config(args.config)
    store = create_store(config)
    removed = asyncio.run(store.prune_expired())
    print(f"Pruned {removed} expired subscription(s)")
    return 0


def cmd_send(args):
    """Send a notification to every subscription of an owner."""
    config = load_config(args.config)

    data = {"title": args.title}
    if args.body:
        data["body"] = args.body
    if args.url:
        data["url"] = args.url

    try:
        message = Message.from_json(
            data,
            topic=args.topic,
            ttl=args.ttl if args.ttl is not None else config.defaults.ttl_seconds,
            urgency=Urgency(args.urgency) if args.urgency else config.defaults.urgency,
        )
        keypair = build_keypair(config)
    except (ValueError, PushDispatchError) as e:
        print(f"Error: {e}")
        return 1

    async def _send() -> list:
        async with DeliveryScheduler(create_store(config), keypair, config=config) as scheduler:
            handles = await scheduler.send(args.owner, message)
            return [(handle, await handle.wait()) for handle in handles]

    results = asyncio.run(_send())
    if not results:
        print(f"No subscriptions for {args.owner}")
        return 1

    failed = 0
    for handle, outcome in results:
        if outcome is None:
            print(f"  {handle.subscription.id}: superseded")
            continue
        line = f"  {handle.subscription.id}: {outcome.status.value}"
        if outcome.reason:
            line += f" ({outcome.reason})"
        print(line)
        if not outcome.success:
            failed += 1

    return 1 if failed else 0


def cmd_version(args):
    """Show version information."""
    print(f"pushdispatch version {__version__}")


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="pushdispatch",
        description="Web Push dispatch engine",
    )
    parser.add_argument(
        "--version", "-V", action="store_true", help="Show version and exit"
    )
    parser.add_argument(
        "--config", "-c", default=None, help="Path to push_dispatch.yaml"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    gen_parser = subparsers.add_parser("generate-keys", help="Generate VAPID key pair")
    gen_parser.set_defaults(func=cmd_generate_keys)

    pub_parser = subparsers.add_parser("public-key", help="Show VAPID public key")
    pub_parser.set_defaults(func=cmd_public_key)

    sub_parser = subparsers.add_parser("subscribe", help="Register a push subscription")
    sub_parser.add_argument("--owner", "-o", required=True, help="Owner (user) ID")
    sub_parser.add_argument(
        "--file", "-f", required=True, help="JSON file with the browser PushSubscription"
    )
    sub_parser.set_defaults(func=cmd_subscribe)

    unsub_parser = subparsers.add_parser("unsubscribe", help="Remove a push subscription")
    unsub_parser.add_argument("--endpoint", "-e", required=True, help="Subscription endpoint URL")
    unsub_parser.set_defaults(func=cmd_unsubscribe)

    send_parser = subparsers.add_parser("send", help="Send a notification")
    send_parser.add_argument("--owner", "-o", required=True, help="Owner (user) ID")
    send_parser.add_argument("--title", "-t", required=True, help="Notification title")
    send_parser.add_argument("--body", "-b", help="Notification body")
    send_parser.add_argument("--url", "-u", help="Action URL")
    send_parser.add_argument("--topic", help="Collapse topic (1-32 URL-safe characters)")
    send_parser.add_argument("--ttl", type=int, default=None, help="Time to live in seconds")
    send_parser.add_argument(
        "--urgency", choices=[u.value for u in Urgency], default=None, help="Delivery urgency"
    )
    send_parser.set_defaults(func=cmd_send)

    prune_parser = subparsers.add_parser("prune", help="Delete expired subscriptions")
    prune_parser.set_defaults(func=cmd_prune)

    args = parser.parse_args()

    if args.version:
        cmd_version(args)
        return

    if not args.command:
        parser.print_help()
        return

    setup_logging()

    result = args.func(args)

    # Commands may return an exit code
    if isinstance(result, int) and result != 0:
        sys.exit(result)


if __name__ == "__main__":
    main()
