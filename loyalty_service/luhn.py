def check_luhn(number: str) -> bool:
    """Luhn checksum of a digit string; anything that is not all ASCII digits fails."""
    if not number:
        return False
    total = 0
    parity = len(number) % 2
    for i, ch in enumerate(number):
        if ch < "0" or ch > "9":
            return False
        digit = ord(ch) - ord("0")
        if i % 2 == parity:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0
