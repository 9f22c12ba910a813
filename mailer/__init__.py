"""mailer/ -- Outbound email delivery for PrepLog.

Layer rule: mailer/ may import from auth/ (for DeliveryError) and core/.
It does NOT import from api/. api/ wires a mailer into AuthService.
"""
