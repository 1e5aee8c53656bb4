from asyncio import Lock
from weakref import WeakValueDictionary


class CellLockManager:
    def __init__(self):
        # a Lock lives only while some operation holds or waits on it
        self.locks = WeakValueDictionary()  # one Lock per cell_id
        self.lock = Lock()  # protects self.locks

    async def get_lock(self, cell_id: int) -> Lock:
        """Get the Lock serializing operations on the specified cell_id

        Args:
            cell_id (int): ID to identify the cell

        Returns:
            Lock: Lock of the specified cell_id
        """
        async with self.lock:
            cell_lock = self.locks.get(cell_id)
            if cell_lock is None:
                cell_lock = Lock()
                self.locks[cell_id] = cell_lock
            return cell_lock

    async def cleanup(self, cell_id: int):
        """Delete the Lock of the specified cell_id

        Args:
            cell_id (int): ID to identify the cell
        """
        async with self.lock:
            self.locks.pop(cell_id, None)
