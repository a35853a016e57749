"""
Block registry: the authoritative collection of live blocks.

All mutations are serialized by one asyncio.Lock. The registry decides where a
new widget is attached and forwards structure changes to the presentation
dispatcher; it never touches the sink itself.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .errors import BlockNotFoundError, DuplicateBlockError
from .executor import BlockExecutor
from .models import AddBlock, MenuItem, Position
from .presentation import Placement, PresentationDispatcher, Side
from .runner import CommandRunner

logger = logging.getLogger(__name__)

# Anchor search order per group: (group, side relative to that group's last block)
_PLACEMENT_FALLBACKS = {
    Position.LEFT: (
        (Position.LEFT, Side.AFTER),
        (Position.CENTER, Side.BEFORE),
        (Position.RIGHT, Side.BEFORE),
    ),
    Position.CENTER: (
        (Position.CENTER, Side.AFTER),
        (Position.LEFT, Side.AFTER),
        (Position.RIGHT, Side.BEFORE),
    ),
    Position.RIGHT: (
        (Position.RIGHT, Side.AFTER),
        (Position.CENTER, Side.AFTER),
        (Position.LEFT, Side.AFTER),
    ),
}


@dataclass
class Block:
    """A named, mutable unit of display."""

    name: str
    position: Position
    text: str = ""
    command: Optional[str] = None
    tail_command: Optional[str] = None
    interval: int = 0
    click_command: Optional[str] = None
    menu_items: List[MenuItem] = field(default_factory=list)
    executor: Optional[BlockExecutor] = field(default=None, repr=False)

    @property
    def has_menu(self) -> bool:
        return bool(self.menu_items)

    @classmethod
    def from_request(cls, request: AddBlock) -> "Block":
        return cls(
            name=request.name,
            position=request.position,
            text=request.text,
            command=request.command,
            tail_command=request.tail_command,
            interval=request.interval,
            click_command=request.click_command,
        )


class BlockRegistry:
    """Ordered, lock-guarded collection of blocks."""

    def __init__(
        self,
        presentation: PresentationDispatcher,
        runner: CommandRunner,
        error_text: str = "ERROR",
    ):
        """Initialize registry.

        Args:
            presentation: Dispatcher every sink call goes through
            runner: Command runner shared by all block executors
            error_text: Text published when a command fails
        """
        self.presentation = presentation
        self.runner = runner
        self.error_text = error_text
        self.lock = asyncio.Lock()
        self._blocks: List[Block] = []
        self._last_in_group: Dict[Position, str] = {}

    def __len__(self) -> int:
        return len(self._blocks)

    @property
    def blocks(self) -> List[Block]:
        """Snapshot of live blocks in insertion order."""
        return list(self._blocks)

    def find_block(self, name: str) -> Optional[Block]:
        """First-match lookup by name."""
        for block in self._blocks:
            if block.name == name:
                return block
        return None

    def get_block(self, name: str) -> Block:
        """Lookup by name.

        Raises:
            BlockNotFoundError: If no block has this name
        """
        block = self.find_block(name)
        if block is None:
            raise BlockNotFoundError(name)
        return block

    def placement_for(self, position: Position) -> Placement:
        """Where a new block of ``position`` is attached.

        Same group first, then the neighbouring groups, then an empty bar.
        """
        for group, side in _PLACEMENT_FALLBACKS[position]:
            anchor = self._last_in_group.get(group)
            if anchor is not None:
                return Placement(anchor=anchor, side=side)
        return Placement()

    async def add_block(self, request: AddBlock) -> Block:
        """Create a block, attach its widget and start its executor.

        Raises:
            DuplicateBlockError: If a live block already has this name
        """
        async with self.lock:
            if self.find_block(request.name) is not None:
                raise DuplicateBlockError(request.name)

            block = Block.from_request(request)
            placement = self.placement_for(block.position)
            self._blocks.append(block)
            self._last_in_group[block.position] = block.name
            self.presentation.create_block(block.name, block.text, block.position, placement)

            block.executor = BlockExecutor(block, self.runner, self.presentation, self.error_text)
            block.executor.start()

        logger.info(f"Added block {block.name} ({block.position.value}, anchor={placement.anchor})")
        return block

    async def remove_block(self, name: str) -> Block:
        """Cancel a block's work and detach it from the registry and the sink.

        Raises:
            BlockNotFoundError: If no block has this name
        """
        async with self.lock:
            block = self.get_block(name)
            if block.executor is not None:
                await block.executor.stop()

            self._blocks.remove(block)
            if self._last_in_group.get(block.position) == block.name:
                self._reset_group_anchor(block.position)
            self.presentation.remove_block(block.name)

        logger.info(f"Removed block {name}")
        return block

    def _reset_group_anchor(self, position: Position) -> None:
        for block in reversed(self._blocks):
            if block.position == position:
                self._last_in_group[position] = block.name
                return
        self._last_in_group.pop(position, None)

    async def update_block(self, name: str) -> Block:
        """Re-run a block's command once and republish its text.

        Blocks without a one-shot command are left untouched.

        Raises:
            BlockNotFoundError: If no block has this name
        """
        async with self.lock:
            block = self.get_block(name)
            executor = block.executor

        if executor is not None and block.command:
            await executor.refresh()
        else:
            logger.debug(f"Block {name} has no command to update")
        return block

    async def add_menu_item(self, name: str, label: str, command: str) -> Block:
        """Append a menu entry, creating the block's menu on first use.

        Raises:
            BlockNotFoundError: If no block has this name
        """
        async with self.lock:
            block = self.get_block(name)
            if not block.has_menu:
                logger.debug(f"Creating menu for block {name}")
            block.menu_items.append(MenuItem(label=label, command=command))
            self.presentation.add_menu_item(name, label)
        return block

    async def shutdown(self) -> None:
        """Stop every executor; blocks stay registered until the registry is dropped."""
        async with self.lock:
            executors = [b.executor for b in self._blocks if b.executor is not None]
            await asyncio.gather(*(e.stop() for e in executors))
        logger.info(f"Stopped {len(executors)} block executors")
