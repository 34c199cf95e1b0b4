"""
Entry point for CXChat application.
This module provides a command-line interface to start the servers and to
manage development users and tokens.
"""

import argparse
import logging
import sys

from CXChat.config import config
from CXChat.core.logging import auto_configure
from CXChat.core.server import SQLiteStore, issue_token
from CXChat.core.message.records import is_valid_user_id
from CXChat.start import api, server

logger = logging.getLogger('CXChat')


def parse(argv=None):
    # Initialize argument parser for command line interface
    parser = argparse.ArgumentParser(prog='CXChat', description='CXChat starter')
    parser.add_argument('--env', choices=['development', 'production', 'testing'], default=None,
                        help='Logging preset (default: $CXCHAT_ENV or development)')
    subparsers = parser.add_subparsers(dest='command', required=True, help='Available commands')

    # Setup server command line arguments
    server_parser = subparsers.add_parser('server', help='Startup websocket SERVER and api')
    server_parser.add_argument('--host', default=config.DEFAULT_HOST, help='Listening address')
    server_parser.add_argument('--port', type=int, default=config.DEFAULT_SERVER_PORT,
                               help=f'SERVER port (default: {config.DEFAULT_SERVER_PORT})')
    server_parser.add_argument('--api-port', type=int, default=None, help='api port (default: port + 1)')

    # Add 'srv-only' command
    srv_parser = subparsers.add_parser('srv-only', help='Startup server (ws server)')
    srv_parser.add_argument('--host', default=config.DEFAULT_HOST, help='Listening address')
    srv_parser.add_argument('--port', type=int, default=config.DEFAULT_SERVER_PORT,
                            help=f'server port (default: {config.DEFAULT_SERVER_PORT})')

    # Add 'api-only' command
    api_parser = subparsers.add_parser('api-only', help='Startup api')
    api_parser.add_argument('--host', default=config.DEFAULT_HOST, help='Listening address')
    api_parser.add_argument('--port', type=int, default=config.DEFAULT_API_PORT,
                            help=f'api server port (default: {config.DEFAULT_API_PORT})')

    user_parser = subparsers.add_parser('create-user', help='Add a user to the directory')
    user_parser.add_argument('username', help='Unique username')
    user_parser.add_argument('--name', default='', help='Display name')
    user_parser.add_argument('--avatar', default='', help='Profile picture URL')
    user_parser.add_argument('--db', default=config.SQLITE_DB_FILE, help='SQLite database file')

    token_parser = subparsers.add_parser('issue-token', help='Sign an access token for a user')
    token_parser.add_argument('user', help='User id or username')
    token_parser.add_argument('--minutes', type=int, default=config.JWT_EXPIRE_MINUTES, help='Token lifetime')
    token_parser.add_argument('--db', default=config.SQLITE_DB_FILE, help='SQLite database file')

    return parser.parse_args(argv)


def create_user(args) -> int:
    store = SQLiteStore(args.db)
    try:
        profile = store.create_user(args.username, name=args.name, avatar=args.avatar)
    finally:
        store.close()
    if profile is None:
        print(f"Username already exists: {args.username}", file=sys.stderr)
        return 1
    print(profile.id)
    return 0


def create_token(args) -> int:
    user_id = args.user
    if not is_valid_user_id(user_id):
        store = SQLiteStore(args.db)
        try:
            profile = store.get_user_by_username(user_id)
        finally:
            store.close()
        if profile is None:
            print(f"Unknown user: {args.user}", file=sys.stderr)
            return 1
        user_id = profile.id
    print(issue_token(user_id, expires_minutes=args.minutes))
    return 0


def main(argv=None):
    args = parse(argv)
    auto_configure(args.env)

    if args.command == 'server':
        server.server(port=args.port, host=args.host, api_port=args.api_port)
    elif args.command == 'srv-only':
        server.server(port=args.port, host=args.host, srv_only=True)
    elif args.command == 'api-only':
        api.api(port=args.port, host=args.host)
    elif args.command == 'create-user':
        return create_user(args)
    elif args.command == 'issue-token':
        return create_token(args)
    else:
        raise Exception('Unknown command')
    return 0


if __name__ == '__main__':
    sys.exit(main())
