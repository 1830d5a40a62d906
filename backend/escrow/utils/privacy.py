"""Privacy utilities for masking payment details in logs."""
import re


def mask_payee(payee_identifier: str) -> str:
    """
    Mask the handle part of a UPI id, keep the provider.

    "helper@bank" -> "he****@bank"
    """
    if "@" not in payee_identifier:
        return re.sub(r"\w", "*", payee_identifier)
    handle, provider = payee_identifier.split("@", 1)
    visible = handle[:2]
    return f"{visible}{'*' * max(len(handle) - len(visible), 1)}@{provider}"


def describe_reference(reference: str) -> str:
    """Short form of an artifact reference; data URLs are not logged in full."""
    if reference.startswith("data:"):
        mime = reference[5:].split(";", 1)[0] or "application/octet-stream"
        return f"<inline {mime}, {len(reference)} chars>"
    return reference
