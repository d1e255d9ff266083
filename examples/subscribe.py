"""
This example connects to a Quartz service, subscribes to production data
for a line and prints every message it receives until interrupted.
"""

import logging
from quartz import MessageHeader, QuartzClient


if __name__ == "__main__":

    import argparse
    from quartz.runner import run

    parser = argparse.ArgumentParser(description="Quartz Subscribe Example")
    parser.add_argument(
        "--host",
        metavar="<host>",
        type=str,
        default="127.0.0.1",
        help="The host the Quartz service is running on",
    )
    parser.add_argument(
        "--port",
        metavar="<port>",
        type=int,
        default=2566,
        help="The port that the Quartz service is listening on",
    )
    parser.add_argument(
        "--receiver",
        metavar="<receiver>",
        type=str,
        default="StreamDemo",
        help="The receiver name to put in the message header",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "error"],
        default="error",
        help="Logging level. Default is 'error'.",
    )

    args = parser.parse_args()

    logging.basicConfig(
        format="%(asctime)s.%(msecs)03.0f [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        level=getattr(logging, args.log_level.upper()),
    )

    def on_message(cli: QuartzClient, header: MessageHeader, body: str) -> None:
        print(f"Received {header.name} ({header.type}): {body}")

    def on_disconnected(cli: QuartzClient):
        print("Connection to Quartz has ended")

    client = QuartzClient(on_message=on_message, on_disconnected=on_disconnected)

    async def main():
        await client.connect(args.host, args.port)
        print("Successfully connected to Quartz")

        header = MessageHeader.create("getProduction", receiver=args.receiver)
        body = dict(
            pos=0, line=2, subline=0, type="Line", program="line", location="Line"
        )

        if await client.send(header, body):
            print("Message sent successfully")
        else:
            print("Failed to send message")

    run(main, finalize=client.close)
