import argparse
import getpass
import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv(override=True)

from davgate.auth import DEFAULT_COST, gen_hash
from davgate.config import ConfigError, find_config_path, load_config
from davgate.core import run_server
from davgate.logger import AuditLogger, setup_logging
from davgate.store import ConfigStore

logger = logging.getLogger("davgate.main")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="davgate", description="Jailed WebDAV server with per-user CRUD permissions")
    parser.add_argument("--config", help="path to the config file (default: search ./config, ~/.swd, ~/.david, .)")
    args = parser.parse_args(argv)

    # startup messages go out before the config says how to format them
    setup_logging()
    try:
        path = find_config_path(args.config)
        config = load_config(path)
    except ConfigError as e:
        logger.error(f"Error reading configuration: {e}")
        sys.exit(1)

    setup_logging(config.log.production, config.log.debug, os.getenv("DAVGATE_AUDIT_LOG"))
    store = ConfigStore(config, path)
    store.watch(float(os.getenv("DAVGATE_RELOAD_INTERVAL", "2")))
    run_server(store, AuditLogger())


def hash_main(argv=None):
    parser = argparse.ArgumentParser(prog="davgate-hash", description="Print a bcrypt hash for the users: section")
    parser.add_argument("password", nargs="?", help="read from the terminal when omitted")
    parser.add_argument("--cost", type=int, default=DEFAULT_COST)
    args = parser.parse_args(argv)

    password = args.password
    if password is None:
        password = getpass.getpass("Password: ")
    if not password:
        parser.error("password must not be empty")
    print(gen_hash(password, rounds=args.cost))


if __name__ == "__main__":
    main()
