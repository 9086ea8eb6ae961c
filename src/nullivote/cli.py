"""Command line for the nullification service.

Usage examples:
    nullivote derive-key --voter-id alice@example.org --master-key <hex>
    nullivote setup --name initial --created-by admin
    nullivote tally --election e1 --authority-sk <decimal>
    nullivote results --election e1

derive-key and setup work locally; tally and results call the server at
NULLIVOTE_SERVER_URL (or --server).
"""

import argparse
import json
import logging
import sys

import requests

from . import keys
from .config import Settings
from .curve import point_to_strings
from .storage import Storage
from .trusted_setup import FileBlobStore, TrustedSetupManager, generate_setup

logger = logging.getLogger(__name__)

TIMEOUT = 30


def _print(obj):
    print(json.dumps(obj, indent=2, sort_keys=True))


def derive_key(args) -> int:
    if args.secret:
        secret = bytes.fromhex(args.secret)
    else:
        if not args.voter_id or not args.master_key:
            logger.error("need --secret, or --voter-id with --master-key")
            return 2
        secret = keys.derive_voter_secret(args.voter_id, bytes.fromhex(args.master_key))
    keypair = keys.derive_keypair(secret)
    out = {
        "publicKey": point_to_strings(keypair.public_point),
        "signal": keys.public_key_signal(keypair.public_point),
    }
    if args.show_secret:
        out["secretScalar"] = str(keypair.secret_scalar)
    _print(out)
    return 0


def setup(args, settings: Settings) -> int:
    storage = Storage(settings.database_path)
    try:
        manager = TrustedSetupManager(storage, FileBlobStore(settings.blob_dir))
        proving_key, verification_key = generate_setup(args.version)
        artifact = manager.publish(
            proving_key,
            verification_key,
            name=args.name,
            created_by=args.created_by,
            description=args.description,
        )
    finally:
        storage.close()
    _print(artifact.to_dict())
    return 0


def tally(args, settings: Settings) -> int:
    base = args.server or settings.server_url
    body = {"authoritySecretKey": args.authority_sk}
    if args.processed_by:
        body["processedBy"] = args.processed_by
    r = requests.post(f"{base}/elections/{args.election}/tally", json=body, timeout=TIMEOUT)
    _print(r.json())
    return 0 if r.ok else 1


def results(args, settings: Settings) -> int:
    base = args.server or settings.server_url
    r = requests.get(f"{base}/elections/{args.election}/tally", timeout=TIMEOUT)
    _print(r.json())
    return 0 if r.ok else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="nullivote")
    sub = p.add_subparsers(dest="cmd")

    d = sub.add_parser("derive-key", help="derive a voter keypair")
    d.add_argument("--secret", help="32-byte secret as hex")
    d.add_argument("--voter-id")
    d.add_argument("--master-key", help="HMAC master key as hex")
    d.add_argument("--show-secret", action="store_true")

    s = sub.add_parser("setup", help="generate and publish a trusted setup")
    s.add_argument("--name", required=True)
    s.add_argument("--created-by", required=True)
    s.add_argument("--description", default="")
    s.add_argument("--version", type=int, default=1)

    t = sub.add_parser("tally", help="run the tally for a closed election")
    t.add_argument("--election", required=True)
    t.add_argument("--authority-sk", required=True, help="authority secret scalar (decimal)")
    t.add_argument("--processed-by")
    t.add_argument("--server")

    r = sub.add_parser("results", help="show final results of a tallied election")
    r.add_argument("--election", required=True)
    r.add_argument("--server")
    return p


def main(argv=None) -> int:
    settings = Settings.from_env()
    logging.basicConfig(format=settings.log_format, level=settings.log_level)
    p = build_parser()
    args = p.parse_args(argv)
    try:
        if args.cmd == "derive-key":
            return derive_key(args)
        if args.cmd == "setup":
            return setup(args, settings)
        if args.cmd == "tally":
            return tally(args, settings)
        if args.cmd == "results":
            return results(args, settings)
    except requests.RequestException as e:
        logger.error("request failed: %s", e)
        return 1
    except ValueError as e:
        logger.error("%s", e)
        return 2
    p.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
