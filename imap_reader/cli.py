"""
Command Line Interface for IMAP Mail Reader.

Provides the CLI entry point for the mail reader.
"""

import argparse
import imaplib
import sys

from . import __version__
from .config import ConfigManager, Credentials, InvalidConfiguration
from .email_processor import run_reader
from .imap_manager import IMAPOperationError, PoolError


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(description="Mark every unseen email in the inbox as read.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--chunk-size", type=int, default=None,
                        help="Size of email chunks to process (default 10)")
    parser.add_argument("--pool-size", type=int, default=None,
                        help="Number of pooled IMAP connections (default 5)")
    parser.add_argument("--config", default="config.json", help="Configuration file")
    parser.add_argument("--local-config", default="config.local.json", help="Local overrides file")
    parser.add_argument("--env-file", default=".env", help="dotenv file with IMAP_* credentials")
    parser.add_argument("--quiet", action="store_true", help="Only print errors and the final summary")
    return parser


def main(argv=None):
    """CLI entry point for IMAP Mail Reader."""
    args = build_parser().parse_args(argv)

    try:
        print(f"IMAP Mail Reader v{__version__}")
        print("=" * 40)
        if args.chunk_size is None:
            print("[i] You can use --chunk-size <size> to change the size of email chunks to be read")

        config_manager = ConfigManager(args.config, args.local_config)
        config_manager.apply_overrides(
            chunk_size=args.chunk_size,
            pool_size=args.pool_size,
            verbose=False if args.quiet else None,
        )
        config_manager.get_reader_settings()

        print("[+] Getting envs and preparing connection")
        credentials = Credentials.from_env(args.env_file)
        print(f"[+] Mail info: {credentials.masked()}")

        summary = run_reader(config_manager, credentials)

        # Final summary
        print(f"\n[done] Unseen emails found: {summary.total_uids}")
        print(f"[done] Chunks processed:   {summary.chunks}")
        print(f"[done] Marked as read:     {summary.marked}")
        if summary.failed:
            print(f"[done] Failed to mark:     {len(summary.failed)}")

        return 0

    except KeyboardInterrupt:
        print("\n[!] Interrupted by user")
        return 1
    except InvalidConfiguration as e:
        print(f"[-] Configuration error: {e}")
        return 1
    except (imaplib.IMAP4.error, IMAPOperationError, PoolError, OSError) as e:
        print(f"[-] IMAP error: {e}")
        return 1
    except Exception as e:
        print(f"[!] Unexpected error: {e}")
        raise


if __name__ == "__main__":
    sys.exit(main())
