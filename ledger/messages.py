"""
User-facing message templates.

Each error code maps to exactly one template. Templates are Bengali, the
language of the app's audience.
"""

from .errors import LedgerServiceError

MESSAGES: dict[str, str] = {
    "ledger_error": "একটি সমস্যা হয়েছে।",
    "account_not_found": "ব্যবহারকারী পাওয়া যায়নি।",
    "record_not_found": "তথ্যটি পাওয়া যায়নি।",
    "insufficient_funds": "অপর্যাপ্ত ব্যালেন্স।",
    "out_of_stock": "এই পণ্যটি স্টকে নেই।",
    "already_claimed": "এটি ইতিমধ্যেই দাবি করা হয়েছে।",
    "already_claimed_today": "আপনি আজ ইতিমধ্যেই এটি দাবি করেছেন।",
    "task_already_completed": "এই টাস্কটি ইতিমধ্যেই সম্পন্ন করা হয়েছে।",
    "reward_not_eligible": "আপনি এখনও এই পুরস্কারের যোগ্য নন।",
    "invalid_amount": "অবৈধ পরিমাণ।",
    "invalid_withdrawal_details": "সঠিক উত্তোলন পদ্ধতি ও একাউন্টের তথ্য দিন।",
    "invalid_referral_code": "অবৈধ রেফারেল কোড।",
    "email_already_registered": "এই ইমেইল দিয়ে ইতিমধ্যে একাউন্ট রয়েছে।",
    "invalid_credentials": "ভুল ইমেইল বা পাসওয়ার্ড।",
    "account_inactive": "আপনার একাউন্ট নিষ্ক্রিয় করা হয়েছে।",
    "unauthorized": "এই কাজের অনুমতি আপনার নেই।",
    "invalid_state_transition": "এই অবস্থা পরিবর্তন করা সম্ভব নয়।",
    "storage_conflict": "অনুগ্রহ করে আবার চেষ্টা করুন।",
    "idempotency_conflict": "এই অনুরোধটি ইতিমধ্যে অন্য একাউন্টে ব্যবহৃত হয়েছে।",
    "invalid_request": "অনুরোধটি সঠিক নয়।",
}


def message_for(error: LedgerServiceError) -> str:
    return MESSAGES.get(error.code, MESSAGES["ledger_error"])
