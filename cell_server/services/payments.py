"""Value custody seam: "pay address A amount V", which may fail."""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from cell_server.crud import LedgerStore


class PaymentError(Exception):
    pass


class PaymentGateway:
    async def pay(self, address: str, amount: int) -> None:
        """Transfer amount to address.

        Raises:
            PaymentError: The transfer did not happen
        """
        raise NotImplementedError


class LedgerPaymentGateway(PaymentGateway):
    """Credits a per-address balance in the payout_ledger table."""

    def __init__(self, Session: async_sessionmaker):
        self.Session = Session
        self.ledger_store = LedgerStore()

    async def pay(self, address: str, amount: int) -> None:
        if amount <= 0:
            raise PaymentError(f"refusing to pay non-positive amount {amount}")
        try:
            async with self.Session() as session:
                async with session.begin():
                    balance = await self.ledger_store.credit(address, amount, session)
        except SQLAlchemyError as e:
            raise PaymentError(f"Failed to credit {address}: {e}") from e
        logging.info(f"Credited {amount} to {address}, balance {balance}")

    async def read_balance(self, address: str) -> int:
        async with self.Session() as session:
            return await self.ledger_store.read_balance(address, session)
