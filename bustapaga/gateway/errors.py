"""Gateway error hierarchy.

Every failure reaching a caller is one of these, each carrying a
human-readable Italian ``user_message`` alongside the technical message.
Nothing here is retried.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for all AI gateway failures."""

    default_user_message = "Si è verificato un errore durante la comunicazione con l'assistente."

    def __init__(self, message: str, user_message: str | None = None) -> None:
        super().__init__(message)
        self.user_message = user_message or self.default_user_message


class ConfigurationError(GatewayError):
    """Required configuration is missing (e.g. no API key). Fatal at startup."""

    default_user_message = "Chiave API Gemini mancante. Imposta GEMINI_API_KEY nel file .env."


class TransportError(GatewayError):
    """Network, timeout or HTTP failure talking to the model service."""

    default_user_message = "Il servizio di analisi non è raggiungibile. Riprova più tardi."

    def __init__(self, message: str, user_message: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message, user_message)
        self.status_code = status_code


class EmptyResponseError(GatewayError):
    """The model answered without any text (blocked or empty candidate)."""

    default_user_message = "L'assistente non ha prodotto una risposta. Riprova riformulando la richiesta."


class InvalidExtractionError(GatewayError):
    """Analysis output is not parseable as a Payslip."""

    default_user_message = (
        "L'analisi ha prodotto un risultato non valido. "
        "Assicurati che il file sia una busta paga chiara."
    )

    def __init__(self, message: str, raw_output: str, user_message: str | None = None) -> None:
        super().__init__(message, user_message)
        self.raw_output = raw_output


class AttachmentError(GatewayError):
    """The uploaded file cannot be read or is of an unsupported type."""

    default_user_message = "Formato file non supportato. Carica un'immagine (JPG, PNG, WEBP) o un PDF."
