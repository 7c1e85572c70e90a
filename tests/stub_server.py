"""
Minimal MCP tool provider used by the test suite.

Speaks line-framed JSON-RPC on stdin/stdout. Every declared tool echoes its
arguments back as text. A few tool names have fixed behavior when called:

    crash      exit immediately without answering
    fail       answer with isError=true
    empty      answer with no content blocks
    rpc_error  answer with a JSON-RPC error object
"""

import argparse
import json
import signal
import sys
import time


def write(message):
    sys.stdout.write(json.dumps(message) + "\n")
    sys.stdout.flush()


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--tools", default="echo")
    parser.add_argument("--name", default="stub")
    parser.add_argument("--noise", action="store_true", help="write non-protocol lines around answers")
    parser.add_argument("--silent-calls", action="store_true", help="never answer tools/call")
    parser.add_argument("--init-error", action="store_true", help="reject initialize")
    parser.add_argument("--ignore-term", action="store_true", help="ignore SIGTERM and stdin EOF")
    parser.add_argument("--fail-list-after", type=int, default=-1, help="fail tools/list after N successes")
    parser.add_argument("--record", help="append every received line to this file")
    opts = parser.parse_args()

    if opts.ignore_term:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    tool_names = [name for name in opts.tools.split(",") if name]
    list_count = 0

    sys.stderr.write(f"{opts.name} starting\n")
    sys.stderr.flush()
    if opts.noise:
        sys.stdout.write("stub provider booting, this is not JSON\n")
        sys.stdout.flush()

    for line in sys.stdin:
        if opts.record:
            with open(opts.record, "a") as f:
                f.write(line)

        message = json.loads(line)
        method = message.get("method")
        if "id" not in message:
            continue
        request_id = message["id"]
        params = message.get("params") or {}

        if opts.noise:
            sys.stdout.write("{not json at all\n")
            sys.stdout.write(json.dumps({"jsonrpc": "2.0", "method": "notifications/message"}) + "\n")
            sys.stdout.flush()

        if method == "initialize":
            if opts.init_error:
                write({"jsonrpc": "2.0", "id": request_id, "error": {"code": -32600, "message": "unsupported client"}})
                continue
            write({
                "jsonrpc": "2.0",
                "id": request_id,
                "result": {
                    "protocolVersion": params.get("protocolVersion", "2024-11-05"),
                    "capabilities": {"tools": {"listChanged": False}},
                    "serverInfo": {"name": opts.name, "version": "0.1.0"},
                },
            })
        elif method == "tools/list":
            list_count += 1
            if 0 <= opts.fail_list_after < list_count:
                write({"jsonrpc": "2.0", "id": request_id, "error": {"code": -32000, "message": "listing broke"}})
                continue
            tools = [
                {
                    "name": name,
                    "description": f"{name} from {opts.name}",
                    "inputSchema": {"type": "object", "properties": {"text": {"type": "string"}}},
                }
                for name in tool_names
            ]
            # One tool without a schema to exercise the adapter's default.
            if tools:
                del tools[-1]["inputSchema"]
            write({"jsonrpc": "2.0", "id": request_id, "result": {"tools": tools}})
        elif method == "tools/call":
            if opts.silent_calls:
                continue
            name = params.get("name")
            arguments = params.get("arguments", {})
            if name == "crash":
                sys.exit(3)
            if name == "rpc_error":
                write({"jsonrpc": "2.0", "id": request_id, "error": {"code": -32001, "message": "tool exploded"}})
                continue
            if name == "empty":
                write({"jsonrpc": "2.0", "id": request_id, "result": {"content": []}})
                continue
            if name == "slow":
                time.sleep(float(arguments.get("seconds", 0.5)))
            text = json.dumps({"server": opts.name, "tool": name, "arguments": arguments}, sort_keys=True)
            result = {"content": [{"type": "text", "text": text}, {"type": "image", "data": "AAAA", "mimeType": "image/png"}]}
            if name == "fail":
                result["isError"] = True
            write({"jsonrpc": "2.0", "id": request_id, "result": result})
        else:
            write({"jsonrpc": "2.0", "id": request_id, "error": {"code": -32601, "message": f"unknown method {method}"}})

    if opts.ignore_term:
        # Outlive stdin EOF too, so only SIGKILL ends the process.
        while True:
            time.sleep(1)


if __name__ == "__main__":
    main()
