"""Bidirectional stream binding utilities."""

import asyncio

import asyncssh

from kubeferry.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_BUFFER_SIZE = 65536


async def bind_reader_writer(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
):
    """
    Pipe data from reader to writer until EOF or error.

    Args:
        reader: Stream reader (asyncio or asyncssh).
        writer: Stream writer (asyncio or asyncssh).
        buffer_size: Maximum bytes read per iteration.
    """
    while True:
        try:
            data = await reader.read(buffer_size)
            if not data:
                break
            writer.write(data)
            await writer.drain()
        except (OSError, EOFError, asyncssh.Error) as e:
            logger.debug(f"Stream copy stopped: {e}")
            break


async def close_writer(writer) -> None:
    """Close a writer, waiting briefly for asyncio transports to finish."""
    try:
        writer.close()
    except OSError:
        return
    if isinstance(writer, asyncio.StreamWriter):
        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=1.0)
        except (OSError, asyncio.TimeoutError):
            pass


async def forward_streams(
    local: tuple[asyncio.StreamReader, asyncio.StreamWriter],
    remote: tuple[asyncio.StreamReader, asyncio.StreamWriter],
    buffer_size: int = DEFAULT_BUFFER_SIZE,
):
    """
    Forward one connection in both directions.

    Runs local->remote and remote->local copies concurrently. As soon as
    either direction finishes, the other is cancelled and both ends are closed.
    """
    local_reader, local_writer = local
    remote_reader, remote_writer = remote

    task_local_to_remote = asyncio.create_task(
        bind_reader_writer(local_reader, remote_writer, buffer_size)
    )
    task_remote_to_local = asyncio.create_task(
        bind_reader_writer(remote_reader, local_writer, buffer_size)
    )
    copies = {task_local_to_remote, task_remote_to_local}

    try:
        await asyncio.wait(copies, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in copies:
            task.cancel()
        await asyncio.gather(*copies, return_exceptions=True)
        await close_writer(remote_writer)
        await close_writer(local_writer)
