"""Local demo agent emitting a stream-JSON transcript for CLI backend integration tests."""

from __future__ import annotations

import argparse
import json
import sys
import uuid


def main(argv: list[str] | None = None) -> int:
    """Echo the prompt back as a deterministic agent turn."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--model", default="echo")
    parser.add_argument("--disallowed-tools", default="")
    parser.add_argument("--resume", default=None)
    parser.add_argument("--fail-tool", default=None)
    parser.add_argument("--fail-error", default="rate limit exceeded")
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("prompt")
    args = parser.parse_args(argv)

    session_id = args.resume or f"echo-{uuid.uuid4().hex[:12]}"
    _emit({"type": "system", "subtype": "init", "session_id": session_id, "model": args.model})

    _emit_tool_call(
        session_id=session_id,
        tool_use_id="toolu_echo_read",
        tool_name="Read",
        tool_input={"prompt_chars": len(args.prompt)},
        result="ok",
        is_error=False,
    )
    if args.fail_tool:
        _emit_tool_call(
            session_id=session_id,
            tool_use_id="toolu_echo_fail",
            tool_name=args.fail_tool,
            tool_input={"query": args.prompt[:40]},
            result=args.fail_error,
            is_error=True,
        )

    first_line = args.prompt.strip().splitlines()[0] if args.prompt.strip() else ""
    text = f"echo: {first_line}"
    _emit(
        {
            "type": "assistant",
            "session_id": session_id,
            "message": {"content": [{"type": "text", "text": text}]},
        },
    )
    _emit(
        {
            "type": "result",
            "subtype": "success" if args.exit_code == 0 else "error",
            "is_error": args.exit_code != 0,
            "result": text,
            "total_cost_usd": 0.0,
            "session_id": session_id,
            "disallowed_tools": [tool for tool in args.disallowed_tools.split(",") if tool],
        },
    )
    return args.exit_code


def _emit_tool_call(  # noqa: PLR0913
    *,
    session_id: str,
    tool_use_id: str,
    tool_name: str,
    tool_input: dict[str, object],
    result: str,
    is_error: bool,
) -> None:
    _emit(
        {
            "type": "assistant",
            "session_id": session_id,
            "message": {
                "content": [
                    {"type": "tool_use", "id": tool_use_id, "name": tool_name, "input": tool_input},
                ],
            },
        },
    )
    _emit(
        {
            "type": "user",
            "session_id": session_id,
            "message": {
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": tool_use_id,
                        "content": result,
                        "is_error": is_error,
                    },
                ],
            },
        },
    )


def _emit(event: dict[str, object]) -> None:
    sys.stdout.write(json.dumps(event, ensure_ascii=False) + "\n")
    sys.stdout.flush()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
