"""Resource limiting for the WASM sandbox.

SandboxLimiter decides every linear-memory and table growth request of one
execution. The same ceilings are installed on the wasmtime Store through
store_limits(), so the engine refuses growth natively and memory.grow returns
-1 inside the guest instead of committing the pages. The bindings do not
expose a growth callback, so the host reports what it can see back to the
limiter: the memories and tables a module declares before instantiation
(observe_module), the committed sizes after a run (observe, observe_table),
and a trap that aborted the guest with no page of headroom left
(observe_abort).
"""

from __future__ import annotations

from typing import Any

from wasmtime import MemoryType, Module, TableType

WASM_PAGE_SIZE = 64 * 1024

# Backstop only; real interpreters use a few thousand table slots
DEFAULT_MAX_TABLE_ELEMENTS = 100_000


class SandboxLimiter:
    """Per-execution memory and table ceiling with usage tracking.

    Once exceeded is set it is never cleared. Peak memory only ever records
    sizes that were allowed, so it never exceeds max_memory.

    Attributes:
        max_memory: Linear memory ceiling in bytes
        max_table_elements: Table element ceiling
        current_memory: Last allowed memory size in bytes
        peak_memory: Highest allowed memory size in bytes
        peak_table_elements: Largest allowed table size
        exceeded: Whether any growth request was denied
    """

    def __init__(self, max_memory: int, max_table_elements: int = DEFAULT_MAX_TABLE_ELEMENTS) -> None:
        self.max_memory = max_memory
        self.max_table_elements = max_table_elements
        self.current_memory = 0
        self.peak_memory = 0
        self.peak_table_elements = 0
        self.exceeded = False

    def memory_growing(self, current: int, desired: int) -> bool:
        """Decide whether linear memory may grow from current to desired bytes."""
        if desired > self.max_memory:
            self.exceeded = True
            return False

        self.current_memory = desired
        if desired > self.peak_memory:
            self.peak_memory = desired
        return True

    def table_growing(self, current: int, desired: int) -> bool:
        """Decide whether a table may grow from current to desired elements."""
        if desired > self.max_table_elements:
            self.exceeded = True
            return False

        if desired > self.peak_table_elements:
            self.peak_table_elements = desired
        return True

    def store_limits(self) -> dict[str, Any]:
        """Keyword arguments for wasmtime.Store.set_limits()."""
        return {
            "memory_size": int(self.max_memory),
            "table_elements": int(self.max_table_elements),
        }

    def observe_module(self, module: Module) -> bool:
        """Consult the limiter for the initial memories and tables a module declares.

        Returns:
            False if any declared minimum is over its ceiling
        """
        allowed = True
        for item in list(module.imports) + list(module.exports):
            item_type = item.type
            if isinstance(item_type, MemoryType):
                desired = item_type.limits.min * WASM_PAGE_SIZE
                allowed = self.memory_growing(self.current_memory, desired) and allowed
            elif isinstance(item_type, TableType):
                allowed = self.table_growing(0, item_type.limits.min) and allowed
        return allowed

    def observe(self, memory_bytes: int) -> None:
        """Record the committed memory size reported by the engine."""
        if memory_bytes != self.current_memory:
            self.memory_growing(self.current_memory, memory_bytes)

    def observe_table(self, elements: int) -> None:
        """Record the committed size of a table reported by the engine."""
        self.table_growing(self.peak_table_elements, elements)

    def observe_abort(self, memory_bytes: int) -> None:
        """Record a guest that trapped with its memory at the ceiling.

        Only for plain traps: not a proc_exit, an epoch interrupt or fuel
        exhaustion. An allocator that aborts when memory.grow fails leaves
        exactly this state behind, so the refused growth is recorded.
        """
        self.observe(memory_bytes)
        if memory_bytes + WASM_PAGE_SIZE > self.max_memory:
            self.memory_growing(memory_bytes, memory_bytes + WASM_PAGE_SIZE)
