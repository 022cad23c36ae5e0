"""Chat command dispatcher.

Turns inbound chat messages into ledger operations and answers in the same
chat. Multi-step conversations (manual expense entry, vote replies) live in
the session store, never in the ledger.
"""

import logging
import re
from typing import Callable

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from planpal.chat.base import InboundMessage, MessageAdapter
from planpal.errors import LedgerError, ValidationError
from planpal.formatting import format_amount, format_handles
from planpal.ledger import (
    EventStatus,
    ExpenseStatus,
    PaymentStatus,
    Vote,
    dedupe_handles,
    to_minor_units,
)
from planpal.ledger_service import (
    LedgerService,
    add_resolution_listener,
    remove_resolution_listener,
)
from planpal.models import Event, Expense
from planpal.receipt.base import ReceiptExtractor
from planpal.receipt.factory import get_receipt_extractor
from planpal.sessions import InteractionState, InteractionStep, SessionStore
from planpal.voting import remaining_votes

logger = logging.getLogger("planpal")

COMMAND_RE = re.compile(r"^/(\w+)(?:@\w+)?(?:\s+(.*))?$", re.DOTALL)
MENTION_RE = re.compile(r"@(\w+)")
AMOUNT_RE = re.compile(r"^(₹?[\d,]+(?:\.\d+)?)(?:\s+(.*))?$", re.DOTALL)
PAYMENT_RE = re.compile(r"^@(\w+)\s+(₹?[\d,]+(?:\.\d+)?)\s*$")

APPROVAL_WORDS = {"yes", "y", "agree", "ok", "okay", "approve", "confirm", "✅", "👍"}
REJECTION_WORDS = {"no", "n", "reject", "disagree", "deny", "cancel", "❌", "👎"}

MIN_DESCRIPTION_LENGTH = 3

HELP_TEXT = """\
🤖 PlanPal bot

🔗 Setup
/start <eventcode> - check an event code (private chat)
/startevent <eventcode> - link this group to your event

💰 Expenses
/addexpense <amount> <description> @mentions - add an expense split with the people you mention
  e.g. /addexpense 1200 Team dinner @alice @bob
📷 Send a bill photo with the caption /addexpense <description> @mentions and the amount is read for you

✅ Approval
Reply yes/agree/ok or no/reject/disagree when asked to vote
/approve - approve every pending expense you are part of
/reject - reject every pending expense you are part of

📊 Reports
/summary - total of confirmed expenses
/report - expenses, payments and who owes whom

💸 Payments
/paid @username <amount> - record a payment you made
/confirmpayment @username <amount> - confirm a payment you received

⚙️ Event
/closeevent - close the event once everything is approved and settled
/help - show this message

All amounts are in ₹ (INR)."""


def parse_vote_reply(text: str) -> Vote | None:
    tokens = set(re.findall(r"\w+|[^\w\s]", text.lower()))
    if tokens & APPROVAL_WORDS:
        return Vote.AGREE
    if tokens & REJECTION_WORDS:
        return Vote.DISAGREE
    return None


def strip_mentions(text: str) -> str:
    return " ".join(MENTION_RE.sub("", text).split())


class CommandDispatcher:
    def __init__(
        self,
        adapter: MessageAdapter,
        sessions: SessionStore,
        session_factory: Callable[[], Session],
        receipt_extractor_factory: Callable[[], ReceiptExtractor] = get_receipt_extractor,
        policy: str | None = None,
        tolerance: int | None = None,
    ):
        self.adapter = adapter
        self.sessions = sessions
        self.session_factory = session_factory
        self.receipt_extractor_factory = receipt_extractor_factory
        self.policy = policy
        self.tolerance = tolerance
        self._commands = {
            "start": self._start,
            "startevent": self._start_event,
            "addexpense": self._add_expense,
            "ae": self._add_expense,
            "approve": self._approve,
            "reject": self._reject,
            "summary": self._summary,
            "report": self._report,
            "paid": self._paid,
            "confirmpayment": self._confirm_payment,
            "closeevent": self._close_event,
            "help": self._help,
        }

    def attach(self) -> None:
        add_resolution_listener(self.on_expense_resolved)

    def detach(self) -> None:
        remove_resolution_listener(self.on_expense_resolved)

    def on_expense_resolved(self, expense: Expense) -> None:
        self.sessions.end_votes_for(expense.id, expense.split_among or [])

    async def reply(self, message: InboundMessage, text: str) -> None:
        await self.adapter.send_message(message.chat_id, text)

    async def handle(self, message: InboundMessage) -> None:
        with self.session_factory() as db:
            service = LedgerService(db, policy=self.policy, tolerance=self.tolerance)
            try:
                await self._dispatch(service, message)
            except LedgerError as e:
                await run_in_threadpool(db.rollback)
                await self.reply(message, f"❌ {e.message}")
            except Exception:
                await run_in_threadpool(db.rollback)
                logger.error(
                    "Chat message handling failed",
                    exc_info=True,
                    extra={"extra_data": {"chat_id": message.chat_id, "sender": message.sender}},
                )
                await self.reply(message, "❌ Something went wrong. Please try again.")

    async def _dispatch(self, service: LedgerService, message: InboundMessage) -> None:
        text = message.text.strip()
        match = COMMAND_RE.match(text)

        if message.photo_file_id:
            if match and match.group(1).lower() in ("addexpense", "ae"):
                await self._photo_expense(service, message, (match.group(2) or "").strip())
            return

        if match:
            handler = self._commands.get(match.group(1).lower())
            if handler:
                await handler(service, message, (match.group(2) or "").strip())
            return

        if text and message.sender:
            await self._continue_interaction(service, message, text)

    # --- Helpers ---

    async def _linked_event(self, service: LedgerService, message: InboundMessage) -> Event | None:
        event = await run_in_threadpool(service.get_event_by_chat, message.chat_id)
        if not event:
            await self.reply(message, "❌ This group is not linked to any event. Use /startevent <code> to link.")
        return event

    async def _require_sender(self, message: InboundMessage) -> bool:
        if not message.sender:
            await self.reply(message, "❌ Could not identify you. Please ensure you have a Telegram username.")
            return False
        return True

    def _mentions(self, message: InboundMessage, text: str) -> list[str]:
        return list(message.mentions) or MENTION_RE.findall(text)

    async def _announce_expense(self, message: InboundMessage, expense: Expense, heading: str) -> None:
        lines = [
            heading,
            "",
            f"Amount: {format_amount(expense.amount)}",
            f"Description: {expense.description}",
            f"Split among: {format_handles(expense.split_among)}",
        ]
        if expense.status is ExpenseStatus.PENDING:
            lines += [
                "",
                "⏳ Waiting for approval from the participants",
                '💬 Reply "yes/agree/ok" to approve or "no/reject/disagree" to reject',
            ]
            for handle in expense.split_among:
                if handle != expense.payer:
                    self.sessions.begin(
                        handle,
                        InteractionStep.AWAITING_EXPENSE_VOTE,
                        expense.event_id,
                        expense_id=expense.id,
                    )
        else:
            lines += ["", "✅ Expense confirmed automatically"]
        await self.reply(message, "\n".join(lines))

    async def _create_expense(
        self,
        service: LedgerService,
        message: InboundMessage,
        event: Event,
        amount: int,
        description: str,
        mentions: list[str],
        heading: str,
    ) -> None:
        split_among = dedupe_handles([message.sender, *mentions])
        expense = await run_in_threadpool(
            service.create_expense, event.id, amount, description, message.sender, list(split_among),
        )
        await self._announce_expense(message, expense, heading)

    # --- Commands ---

    async def _start(self, service: LedgerService, message: InboundMessage, args: str) -> None:
        if not args:
            await self.reply(message, HELP_TEXT)
            return
        event = await run_in_threadpool(service.get_event_by_code, args.split()[0])
        await self.reply(
            message,
            f'✅ Event "{event.name}" recognized.\n'
            f"Please add me to your group and run /startevent {event.code} inside the group.",
        )

    async def _start_event(self, service: LedgerService, message: InboundMessage, args: str) -> None:
        if message.is_private:
            await self.reply(message, "This command is meant for groups.")
            return
        if not args:
            await self.reply(message, "⚠️ Usage: /startevent <eventcode>")
            return
        event = await run_in_threadpool(service.link_chat_group, args.split()[0], message.chat_id)
        await self.reply(
            message,
            f'✅ Event "{event.name}" is now active in this group.\n'
            "Expense logging will follow group consensus.",
        )

    async def _add_expense(self, service: LedgerService, message: InboundMessage, args: str) -> None:
        match = AMOUNT_RE.match(args)
        if not match:
            await self.reply(
                message,
                "⚠️ Usage: /addexpense <amount> <description> [@mentions]\nExample: /addexpense 500 Dinner @friend",
            )
            return
        event = await self._linked_event(service, message)
        if not event or not await self._require_sender(message):
            return

        amount = to_minor_units(match.group(1))
        rest = match.group(2) or ""
        description = strip_mentions(rest) or "Unspecified expense"
        await self._create_expense(
            service, message, event, amount, description, self._mentions(message, rest), "💰 Expense added!",
        )

    async def _photo_expense(self, service: LedgerService, message: InboundMessage, args: str) -> None:
        event = await self._linked_event(service, message)
        if not event or not await self._require_sender(message):
            return
        mentions = self._mentions(message, args)
        if not mentions:
            await self.reply(
                message,
                "⚠️ Please mention participants in the photo caption.\nExample: /addexpense Team lunch @alice @bob",
            )
            return

        await self.reply(message, "📷 Processing invoice image... Please wait.")
        image_bytes = await self.adapter.download_file(message.photo_file_id)
        try:
            result = await self.receipt_extractor_factory().extract(image_bytes, "image/jpeg")
        except Exception:
            logger.error("Receipt extraction failed", exc_info=True, extra={"extra_data": {"event_id": event.id}})
            result = None

        description = strip_mentions(args) or (result.description if result else None)

        if result is None or result.is_unclear():
            candidates = []
            for c in (result.candidates if result else []):
                try:
                    candidates.append(to_minor_units(round(c.amount, 2)))
                except ValidationError:
                    continue
            candidates = list(dict.fromkeys(candidates))[:3]

            lines = ["📷 Image processed, but the details are unclear. Let's enter them manually."]
            if description:
                lines.append(f'💡 Detected description: "{description}"')
            if len(candidates) > 1:
                self.sessions.begin(
                    message.sender,
                    InteractionStep.AWAITING_AMOUNT_SELECTION,
                    event.id,
                    mentions=tuple(mentions),
                    description=description,
                    candidates=tuple(candidates),
                )
                lines.append("💰 Which amount is right? Reply with its number, or type the amount:")
                lines += [f"{i}. {format_amount(a)}" for i, a in enumerate(candidates, start=1)]
            else:
                self.sessions.begin(
                    message.sender,
                    InteractionStep.AWAITING_AMOUNT,
                    event.id,
                    mentions=tuple(mentions),
                    description=description,
                )
                lines.append("💰 Please enter the expense amount (e.g., 1200):")
            await self.reply(message, "\n".join(lines))
            return

        amount = to_minor_units(round(result.top_amount(), 2))
        await self._create_expense(
            service,
            message,
            event,
            amount,
            description or "Expense from invoice",
            mentions,
            "✅ Invoice processed successfully!",
        )

    async def _approve(self, service: LedgerService, message: InboundMessage, args: str) -> None:
        await self._bulk_vote(service, message, Vote.AGREE)

    async def _reject(self, service: LedgerService, message: InboundMessage, args: str) -> None:
        await self._bulk_vote(service, message, Vote.DISAGREE)

    async def _bulk_vote(self, service: LedgerService, message: InboundMessage, vote: Vote) -> None:
        if not await self._require_sender(message):
            return
        event = await self._linked_event(service, message)
        if not event:
            return

        results = await run_in_threadpool(service.vote_on_pending, event.id, message.sender, vote)
        if not results:
            await self.reply(message, "✅ No pending expenses require your approval.")
            return
        for expense, _ in results:
            self.sessions.end_votes_for(expense.id, [message.sender])

        if vote is Vote.DISAGREE:
            await self.reply(message, f"❌ You rejected {len(results)} expense(s). These expenses have been cancelled.")
            return
        confirmed = len([1 for _, status in results if status is ExpenseStatus.CONFIRMED])
        if confirmed:
            await self.reply(
                message,
                f"✅ You approved {len(results)} expense(s). {confirmed} expense(s) now confirmed with enough approvals.",
            )
        else:
            await self.reply(message, f"✅ You approved {len(results)} expense(s). Waiting for more approvals to confirm.")

    async def _summary(self, service: LedgerService, message: InboundMessage, args: str) -> None:
        event = await self._linked_event(service, message)
        if not event:
            return
        total = await run_in_threadpool(service.confirmed_total, event.id)
        await self.reply(
            message,
            f"💰 Event Summary: {event.name}\nTotal Confirmed Expenses: {format_amount(total)}",
        )

    async def _report(self, service: LedgerService, message: InboundMessage, args: str) -> None:
        event = await self._linked_event(service, message)
        if not event:
            return

        expenses = await run_in_threadpool(service.list_expenses, event.id, ExpenseStatus.CONFIRMED)
        payments = await run_in_threadpool(service.list_payments, event.id, PaymentStatus.CONFIRMED)
        transfers = await run_in_threadpool(service.compute_settlements, event.id)

        lines = [f"📋 Event Report: {event.name}", f"📅 Date: {event.date:%b %d, %Y}", "", "💰 Confirmed Expenses:"]
        lines += [f"• {e.description}: {format_amount(e.amount)} (by @{e.payer})" for e in expenses] or ["None"]
        lines += ["", "🤝 Payments:"]
        lines += [
            f"• @{p.from_handle} → @{p.to_handle} {format_amount(p.amount)}" for p in payments
        ] or ["None"]
        lines += ["", "⏳ Pending Debts:"]
        lines += [
            f"• @{t.from_handle} owes @{t.to_handle} {format_amount(t.amount)}" for t in transfers
        ] or ["All settled! ✅"]
        await self.reply(message, "\n".join(lines))

    async def _paid(self, service: LedgerService, message: InboundMessage, args: str) -> None:
        match = PAYMENT_RE.match(args)
        if not match:
            await self.reply(message, "⚠️ Usage: /paid @username <amount>\nExample: /paid @alice 600")
            return
        event = await self._linked_event(service, message)
        if not event or not await self._require_sender(message):
            return

        to_handle = match.group(1)
        amount = to_minor_units(match.group(2))
        payment = await run_in_threadpool(service.create_payment, event.id, message.sender, to_handle, amount)
        await self.reply(
            message,
            f"Payment of {format_amount(payment.amount)} recorded from @{payment.from_handle} to @{payment.to_handle}. "
            f"@{payment.to_handle}, please confirm with /confirmpayment @{payment.from_handle} "
            f"{format_amount(payment.amount)[1:]}",
        )

    async def _confirm_payment(self, service: LedgerService, message: InboundMessage, args: str) -> None:
        match = PAYMENT_RE.match(args)
        if not match:
            await self.reply(message, "⚠️ Usage: /confirmpayment @username <amount>\nExample: /confirmpayment @bob 600")
            return
        event = await self._linked_event(service, message)
        if not event or not await self._require_sender(message):
            return

        from_handle = match.group(1)
        amount = to_minor_units(match.group(2))
        payment = await run_in_threadpool(
            service.confirm_payment, event.id, from_handle, message.sender, amount, message.sender,
        )
        await self.reply(
            message,
            f"✅ Payment of {format_amount(payment.amount)} from @{payment.from_handle} "
            f"to @{payment.to_handle} confirmed.",
        )

    async def _close_event(self, service: LedgerService, message: InboundMessage, args: str) -> None:
        event = await self._linked_event(service, message)
        if not event:
            return
        if event.status is EventStatus.CLOSED:
            await self.reply(message, "Event is already closed.")
            return

        name = event.name
        outcome = await run_in_threadpool(service.close_event, event.id)
        if outcome.closed:
            await self.reply(
                message,
                f'🏁 Event Closed! 🏁\n\nEvent "{name}" has been successfully closed. '
                "No further expenses or payments can be recorded.",
            )
            return

        lines = ["⚠️ Cannot close event:"]
        lines += [f"• {reason}" for reason in outcome.reasons]
        if outcome.outstanding_transfers:
            lines += ["", "Outstanding transfers:"]
            lines += [
                f"• @{t.from_handle} owes @{t.to_handle} {format_amount(t.amount)}"
                for t in outcome.outstanding_transfers
            ]
        await self.reply(message, "\n".join(lines))

    async def _help(self, service: LedgerService, message: InboundMessage, args: str) -> None:
        await self.reply(message, HELP_TEXT)

    # --- Conversations ---

    async def _continue_interaction(self, service: LedgerService, message: InboundMessage, text: str) -> None:
        state = self.sessions.get(message.sender)
        if not state:
            return
        event = await run_in_threadpool(service.get_event_by_chat, message.chat_id)
        if not event or event.id != state.event_id:
            return

        try:
            if state.step is InteractionStep.AWAITING_EXPENSE_VOTE:
                await self._vote_reply(service, message, state, text)
            elif state.step is InteractionStep.AWAITING_AMOUNT_SELECTION:
                await self._amount_selection_reply(message, state, text)
            elif state.step is InteractionStep.AWAITING_AMOUNT:
                await self._amount_reply(message, state, text)
            elif state.step is InteractionStep.AWAITING_DESCRIPTION:
                await self._description_reply(message, state, text)
            elif state.step is InteractionStep.AWAITING_CONFIRMATION:
                await self._confirmation_reply(service, message, event, state, text)
        except LedgerError:
            self.sessions.discard(message.sender)
            raise

    async def _vote_reply(
        self, service: LedgerService, message: InboundMessage, state: InteractionState, text: str,
    ) -> None:
        vote = parse_vote_reply(text)
        if vote is None:
            await self.reply(
                message, '⚠️ Please reply with "yes/agree/ok" to approve or "no/reject/disagree" to reject the expense.',
            )
            return

        status = await run_in_threadpool(service.cast_vote, state.expense_id, message.sender, vote)
        self.sessions.end_votes_for(state.expense_id, [message.sender])
        expense = await run_in_threadpool(service.get_expense, state.expense_id)

        if status is ExpenseStatus.REJECTED:
            await self.reply(
                message,
                f"❌ Expense Rejected!\n\nAmount: {format_amount(expense.amount)}\n"
                f"Description: {expense.description}\nReason: Participant disagreement",
            )
        elif status is ExpenseStatus.CONFIRMED:
            await self.reply(
                message,
                f"✅ Expense Approved!\n\nAmount: {format_amount(expense.amount)}\n"
                f"Description: {expense.description}\nApproved by {service.policy.value} consensus",
            )
        else:
            remaining = remaining_votes(expense.votes or {}, expense.split_among or [])
            await self.reply(message, f"✅ Your approval recorded. Waiting for {remaining} more vote(s).")

    async def _amount_selection_reply(self, message: InboundMessage, state: InteractionState, text: str) -> None:
        choice = text.strip()
        if choice.isdigit() and 1 <= int(choice) <= len(state.candidates):
            amount = state.candidates[int(choice) - 1]
        else:
            try:
                amount = to_minor_units(choice)
            except ValidationError:
                await self.reply(
                    message, f"⚠️ Reply with a number from 1 to {len(state.candidates)}, or type the amount (e.g., 1200):",
                )
                return
        await self._amount_chosen(message, state, amount)

    async def _amount_reply(self, message: InboundMessage, state: InteractionState, text: str) -> None:
        try:
            amount = to_minor_units(text)
        except ValidationError:
            await self.reply(message, "⚠️ Please enter a valid amount (numbers only, e.g., 1200):")
            return
        await self._amount_chosen(message, state, amount)

    async def _amount_chosen(self, message: InboundMessage, state: InteractionState, amount: int) -> None:
        if state.description:
            state = self.sessions.update(message.sender, amount=amount, step=InteractionStep.AWAITING_CONFIRMATION)
            await self._ask_confirmation(message, state)
        else:
            self.sessions.update(message.sender, amount=amount, step=InteractionStep.AWAITING_DESCRIPTION)
            await self.reply(message, "📝 Great! Now please enter a description for this expense:")

    async def _description_reply(self, message: InboundMessage, state: InteractionState, text: str) -> None:
        description = text.strip()
        if len(description) < MIN_DESCRIPTION_LENGTH:
            await self.reply(message, "⚠️ Please enter a more detailed description (at least 3 characters):")
            return
        state = self.sessions.update(
            message.sender, description=description, step=InteractionStep.AWAITING_CONFIRMATION,
        )
        await self._ask_confirmation(message, state)

    async def _ask_confirmation(self, message: InboundMessage, state: InteractionState | None) -> None:
        if state is None:
            return
        split_among = dedupe_handles([state.handle, *state.mentions])
        await self.reply(
            message,
            "📋 Please confirm the expense details:\n\n"
            f"💰 Amount: {format_amount(state.amount)}\n"
            f"📝 Description: {state.description}\n"
            f"👥 Split among: {format_handles(split_among)}\n\n"
            "Type confirm to create the expense or cancel to abort.",
        )

    async def _confirmation_reply(
        self,
        service: LedgerService,
        message: InboundMessage,
        event: Event,
        state: InteractionState,
        text: str,
    ) -> None:
        response = text.strip().lower()
        if response == "cancel":
            self.sessions.discard(message.sender)
            await self.reply(message, "❌ Expense entry cancelled.")
            return
        if response != "confirm":
            await self.reply(message, "⚠️ Please type confirm to create the expense or cancel to abort.")
            return

        state = self.sessions.pop(message.sender)
        if not state or not state.amount or not state.description:
            await self.reply(message, "❌ Error: Missing expense details. Please start over.")
            return
        await self._create_expense(
            service,
            message,
            event,
            state.amount,
            state.description,
            list(state.mentions),
            "✅ Expense created manually!",
        )
