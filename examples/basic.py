#!/usr/bin/env python3
"""Basic Eventsocket client: listen on 'foo', answer requests, optionally ask one.

    python examples/basic.py [--request_client_id <id>]
"""

import asyncio
import random

from jsonargparse import CLI

from eventsocket import EventsocketClient, Message


async def main(request_client_id: str | None) -> None:
    async with EventsocketClient("127.0.0.1:8080") as client:
        print(f"ClientId: {client.get_id()}\n")

        def on_broadcast(m: Message) -> None:
            print(f"BROADCAST: {m.payload.get('value')}")

        def on_foo(m: Message) -> None:
            print(f"{m.event}: {m.payload.get('awesomeValue')}")

        async def on_request(m: Message) -> None:
            print(f"REQUEST: requestId:{m.request_id} replyingTo:{m.reply_client_id}")
            assert m.request_id is not None
            await client.reply(
                m.request_id,
                m.reply_client_id,
                {"I_SEE_YOU": str(random.randint(99999, 9999999))},
            )

        def on_reply(m: Message) -> None:
            print(f"REPLY: requestId:{m.request_id} payload:{m.payload} error:{m.error}")

        client.register_broadcast_handler(on_broadcast)
        await client.subscribe("foo", on_foo)
        client.register_request_handler(on_request)

        if request_client_id:
            await client.request(request_client_id, {"PEEK_ABOO": "hello"}, on_reply)

        await client.run_forever()


def run(request_client_id: str | None = None) -> None:
    """Run the example client.

    Args:
        request_client_id: If set, send one request to this client.
    """
    asyncio.run(main(request_client_id))


if __name__ == "__main__":
    CLI(run)
