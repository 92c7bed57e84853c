import asyncio
import os
from typing import Optional
from grpc import aio
from ..config import Settings
from ..proto import store_pb2_grpc
from .service import StoreService, logger  # Reuse the same logger
from .repo import ParticipantsRepo, MessagesRepo
from .hub import Hub


async def start_server(host="127.0.0.1", port=0, data_dir: Optional[str] = None):
    """Create and start the store server without blocking.

    Args:
        host (str): Hostname to bind server to
        port (int): Port to listen on; 0 picks a free port
        data_dir (Optional[str]): Directory for JSONL files; None keeps
            everything in memory

    Returns:
        tuple: (grpc.aio.Server, StoreService, bound port)
    """
    if data_dir:
        participants = ParticipantsRepo(os.path.join(data_dir, "participants.jsonl"))
        messages = MessagesRepo(os.path.join(data_dir, "messages.jsonl"))
    else:
        participants = ParticipantsRepo()
        messages = MessagesRepo()
    service = StoreService(participants, messages, Hub())
    server = aio.server()
    store_pb2_grpc.add_StoreServicer_to_server(service, server)
    bound = server.add_insecure_port(f"{host}:{port}")
    await server.start()
    logger.info(f"Store server is now running on {host}:{bound}")
    return server, service, bound


async def serve(settings: Optional[Settings] = None):
    """Run the store server until terminated.

    Side Effects:
        - Creates data directory if needed
        - Starts gRPC server
        - Logs server startup progress
    """
    settings = settings or Settings.from_env()
    logger.info(f"Server starting, listening on {settings.target}")
    server, _, _ = await start_server(settings.host, settings.port, settings.data_dir)
    await server.wait_for_termination()


def main():
    asyncio.run(serve())


if __name__ == "__main__":
    main()
