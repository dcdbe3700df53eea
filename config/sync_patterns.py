"""
Sync Filter Pattern Configuration.

Centralized pattern tables used to decide which provider records are noise
and which become CRM interactions.

Used by:
- crmsync/services/gmail_filters.py (automated sender, invite and subject filters)
- crmsync/services/entity_resolver.py (company inference from email domains)
"""

# =============================================================================
# AUTOMATED SENDER PATTERNS
# =============================================================================
# Case-insensitive substrings matched against the full sender address,
# so both the local part and the domain count (e.g. bounces.example.com).

AUTOMATED_SENDER_PATTERNS = (
    # Standard no-reply patterns
    'noreply', 'no-reply', 'donotreply', 'do-not-reply',

    # Notifications
    'notifications', 'notify',

    # System/automated
    'mailer-daemon', 'postmaster', 'bounces', 'unsubscribe',

    # Newsletter/marketing
    'newsletter', 'marketing',
)

# =============================================================================
# CALENDAR INVITE DETECTION
# =============================================================================
# Invites are imported by the calendar importer, so Gmail skips them.

CALENDAR_INVITE_SUBJECT_PREFIXES = (
    'invitation:',
    'invite:',
    'calendar:',
    'updated invitation:',
    'canceled event:',
)

CALENDAR_CONTENT_TYPE = 'text/calendar'

# =============================================================================
# AUTO-GENERATED SUBJECTS
# =============================================================================

AUTO_GENERATED_SUBJECT_PREFIXES = (
    'automatic reply',
    'out of office',
    'delivery status notification',
    'returned mail',
    'failure notice',
    'undelivered mail',
)

# Subjects shorter than this (after stripping) are treated as auto-generated
MIN_SUBJECT_LENGTH = 3

# =============================================================================
# CONSUMER EMAIL DOMAINS
# =============================================================================
# Personal mailbox providers. An address here says nothing about employer,
# so no company is inferred from it.

COMMON_EMAIL_DOMAINS = {
    'gmail.com', 'googlemail.com',
    'yahoo.com',
    'hotmail.com', 'outlook.com', 'live.com', 'msn.com',
    'icloud.com', 'me.com', 'mac.com',
    'aol.com',
    'protonmail.com', 'pm.me',
}

# Suffixes stripped before turning a domain into a company name
COMPANY_DOMAIN_SUFFIXES = ('.com', '.org', '.net', '.io')
