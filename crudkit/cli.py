"""
crudkit developer CLI
=====================
  1. Dispatch a single request file against DynamoDB or an in-memory table
  2. Run a local HTTP endpoint that accepts the same requests as the Lambda

Example usage:
  # Read an item from a seeded in-memory table
  crudkit invoke read.yaml --store memory --seed tables.yaml

  # Same request against DynamoDB Local
  DYNAMODB_ENDPOINT_URL=http://localhost:8000 crudkit invoke read.json

  # Run the local endpoint on localhost:8080
  crudkit serve --store memory --seed tables.yaml --port 8080

  # In another terminal
  curl -X POST -H "Content-Type: application/json" \
       --data '{"operation": "list", "tableName": "items", "payload": {}}' \
       http://localhost:8080/

Request files are JSON or YAML (by extension) holding
``{operation, tableName, payload}``. Seed files hold
``{tables: {name: {key: [pk, sk], items: [...]}}}``.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, Optional

import yaml
from botocore.exceptions import BotoCoreError

from .config import LOG_LEVELS, STORES, Settings, build_store
from .dispatcher import handle_event
from .errors import CrudkitError
from .models import OperationResult

# ---------------------------
# File Helpers
# ---------------------------

def load_document(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        if path.endswith((".yaml", ".yml")):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def make_store(settings: Settings, seed: Optional[str] = None):
    if seed and settings.store != "memory":
        raise ValueError("--seed only applies to the memory store")
    store = build_store(settings)
    if seed:
        store.seed(load_document(seed))
    return store


def render(result: OperationResult) -> str:
    response = result.to_response()
    try:
        response["body"] = json.loads(result.body)
    except ValueError:
        pass
    return json.dumps(response, indent=2, sort_keys=True)


# ---------------------------
# Local Server
# ---------------------------

def create_app(store):
    from flask import Flask, request

    app = Flask(__name__)

    @app.route("/", methods=["POST"])
    @app.route("/dispatch", methods=["POST"])
    def dispatch_request():
        result = handle_event({"body": request.get_data(as_text=True)}, store)
        return app.response_class(result.body, status=result.status_code, mimetype="application/json")

    return app


def run_server(store, host: str, port: int):
    app = create_app(store)
    print(f"[*] crudkit listening on http://{host}:{port}")
    app.run(host=host, port=port, threaded=True)


# ---------------------------
# CLI Interface
# ---------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="crudkit", description="CRUD request dispatcher")
    parser.add_argument("--log-level", default=None, type=str.upper, choices=LOG_LEVELS,
                        help="Logging level (default from LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    def store_options(p):
        p.add_argument("--store", choices=STORES, default=None, help="Backing store (default from CRUDKIT_STORE)")
        p.add_argument("--seed", default=None, help="YAML/JSON file to load into the memory store")
        p.add_argument("--strict-keys", action="store_true", default=None,
                       help="Fail update/delete of keys that do not exist")

    # invoke
    i = sub.add_parser("invoke", help="Dispatch one request (YAML/JSON) and print the response")
    i.add_argument("request", help="Path to request file")
    store_options(i)

    # serve
    s = sub.add_parser("serve", help="Run a local HTTP endpoint for requests")
    s.add_argument("--host", default="127.0.0.1", help="Bind address (default 127.0.0.1)")
    s.add_argument("--port", default=8080, type=int, help="Port (default 8080)")
    store_options(s)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = Settings.from_env()
    except ValueError as e:
        print(f"[✗] Invalid configuration: {e}", file=sys.stderr)
        return 2
    if args.store:
        settings.store = args.store
    if args.strict_keys:
        settings.strict_keys = True
    logging.basicConfig(level=args.log_level or settings.log_level,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        store = make_store(settings, args.seed)
    except (OSError, ValueError, yaml.YAMLError, BotoCoreError, CrudkitError) as e:
        print(f"[✗] Could not set up the store: {e}", file=sys.stderr)
        return 2

    if args.command == "invoke":
        try:
            event = load_document(args.request)
        except (OSError, ValueError, yaml.YAMLError) as e:
            print(f"[✗] Could not read request: {e}", file=sys.stderr)
            return 2
        result = handle_event(event, store)
        print(render(result))
        return 0 if result.ok else 1

    elif args.command == "serve":
        run_server(store, args.host, args.port)
        return 0

    return 2


if __name__ == "__main__":
    sys.exit(main())
