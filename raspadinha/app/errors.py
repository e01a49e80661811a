"""
=============================================================================
RASPADINHA - Erros de Domínio
=============================================================================
Cada erro carrega o status HTTP e a mensagem pública devolvida ao cliente.
Validação -> 4xx sem efeitos colaterais; integridade/armazenamento -> 5xx.
=============================================================================
"""

from typing import Optional


class SettlementError(Exception):
    """Base para todos os erros do núcleo de liquidação."""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


# =============================================================================
# VALIDAÇÃO (4xx)
# =============================================================================

class MissingParameters(SettlementError):
    status_code = 400
    public_message = "Missing required parameters"


class InvalidCardPrice(SettlementError):
    status_code = 400
    public_message = "Invalid card price"


class InsufficientBalance(SettlementError):
    status_code = 400
    public_message = "Insufficient balance"


class InvalidDepositAmount(SettlementError):
    status_code = 400
    public_message = "Invalid amount"


class CardNotFound(SettlementError):
    status_code = 404
    public_message = "Scratch card not found or inactive"


class AccountNotFound(SettlementError):
    status_code = 404
    public_message = "User profile not found"


class DepositNotFound(SettlementError):
    status_code = 404
    public_message = "Deposit not found"


# =============================================================================
# INTEGRIDADE / INFRAESTRUTURA (5xx)
# =============================================================================

class LedgerIntegrityError(SettlementError):
    """Par saldo anterior/novo inconsistente com o valor lançado."""

    status_code = 500
    public_message = "Ledger integrity violation"


class ConcurrentUpdateError(SettlementError):
    """A versão do saldo mudou entre a leitura e a escrita."""

    status_code = 409
    public_message = "Concurrent balance update, try again"


class StorageError(SettlementError):
    status_code = 500
    public_message = "Database error"


class PaymentGatewayError(SettlementError):
    status_code = 500
    public_message = "Payment service error"
