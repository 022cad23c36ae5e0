"""
Tests for the chat command dispatcher.

Messages go through a recording adapter; receipts through a stub extractor.
"""

import asyncio

import pytest

from planpal.chat.base import InboundMessage
from planpal.chat.commands import HELP_TEXT, CommandDispatcher, parse_vote_reply
from planpal.ledger import EventStatus, ExpenseStatus, PaymentStatus, Vote
from planpal.receipt.base import AmountCandidate, ReceiptExtractionResult
from planpal.sessions import InteractionStep, SessionStore

GROUP = "-100"


def send(dispatcher, sender, text, chat_id=GROUP, chat_type="group", photo=None):
    message = InboundMessage(
        chat_id=chat_id, chat_type=chat_type, sender=sender, text=text, photo_file_id=photo,
    )
    asyncio.run(dispatcher.handle(message))
    return dispatcher.adapter.last()


@pytest.fixture
def event(service):
    return service.create_event("Goa Trip", code="GOA123")


@pytest.fixture
def linked(dispatcher, event):
    send(dispatcher, "carol", "/startevent GOA123")
    return event


def add_snacks(dispatcher):
    return send(dispatcher, "carol", "/addexpense 300 Snacks @alice @bob")


class TestParseVoteReply:
    @pytest.mark.parametrize("text", ["yes", "OK!", "I agree", "👍", "✅ done", "y"])
    def test_approvals(self, text):
        assert parse_vote_reply(text) is Vote.AGREE

    @pytest.mark.parametrize("text", ["no", "Reject", "❌", "👎", "n", "disagree, too much"])
    def test_rejections(self, text):
        assert parse_vote_reply(text) is Vote.DISAGREE

    @pytest.mark.parametrize("text", ["maybe", "yesterday", "nothing", "okayish"])
    def test_unrecognized(self, text):
        """Whole words only; 'yesterday' is not 'yes'."""
        assert parse_vote_reply(text) is None


class TestSetup:
    def test_startevent_links_group(self, dispatcher, event, ledger):
        reply = send(dispatcher, "carol", "/startevent goa123")
        assert 'Event "Goa Trip" is now active' in reply
        linked = ledger().get_event(event.id)
        assert linked.status is EventStatus.ACTIVE
        assert linked.chat_group_id == GROUP

    def test_startevent_private_chat(self, dispatcher, event):
        reply = send(dispatcher, "carol", "/startevent GOA123", chat_id="42", chat_type="private")
        assert "meant for groups" in reply

    def test_startevent_usage(self, dispatcher, event):
        assert "Usage: /startevent" in send(dispatcher, "carol", "/startevent")

    def test_start_recognizes_code(self, dispatcher, event):
        reply = send(dispatcher, "carol", "/start GOA123", chat_id="42", chat_type="private")
        assert "recognized" in reply
        assert "/startevent GOA123" in reply

    def test_start_unknown_code(self, dispatcher, event):
        reply = send(dispatcher, "carol", "/start NOPE00", chat_id="42", chat_type="private")
        assert reply == "❌ Invalid event code"

    def test_unlinked_group(self, dispatcher, event):
        assert "not linked to any event" in send(dispatcher, "carol", "/summary", chat_id="-999")

    def test_help_with_bot_suffix(self, dispatcher):
        assert send(dispatcher, "carol", "/help@PlanPalBot") == HELP_TEXT

    def test_unknown_command_ignored(self, dispatcher, linked):
        before = len(dispatcher.adapter.sent)
        send(dispatcher, "carol", "/dance")
        assert len(dispatcher.adapter.sent) == before


class TestExpenses:
    def test_addexpense_prompts_votes(self, dispatcher, linked, ledger):
        """A group expense waits for the mentioned people to vote."""
        reply = add_snacks(dispatcher)
        assert "Amount: ₹300.00" in reply
        assert "Split among: @carol, @alice, @bob" in reply
        assert "Waiting for approval" in reply

        expense = ledger().list_expenses(linked.id)[0]
        assert expense.amount == 30000
        assert expense.payer == "carol"
        assert expense.status is ExpenseStatus.PENDING
        assert dispatcher.sessions.get("alice").step is InteractionStep.AWAITING_EXPENSE_VOTE
        assert dispatcher.sessions.get("carol") is None

    def test_vote_replies_confirm(self, dispatcher, linked, ledger):
        add_snacks(dispatcher)
        assert "Waiting for 2 more vote(s)" in send(dispatcher, "alice", "yes please")
        reply = send(dispatcher, "bob", "👍")
        assert "Expense Approved!" in reply
        assert "majority consensus" in reply
        assert ledger().list_expenses(linked.id)[0].status is ExpenseStatus.CONFIRMED
        assert len(dispatcher.sessions) == 0

    def test_vote_reply_rejects_and_closes_prompts(self, dispatcher, linked, ledger):
        """One rejection cancels the expense and nobody is asked any more."""
        add_snacks(dispatcher)
        assert "Expense Rejected!" in send(dispatcher, "alice", "no")
        assert ledger().list_expenses(linked.id)[0].status is ExpenseStatus.REJECTED
        assert dispatcher.sessions.get("bob") is None

    def test_unclear_vote_reply(self, dispatcher, linked):
        add_snacks(dispatcher)
        assert "Please reply with" in send(dispatcher, "alice", "maybe later")
        assert dispatcher.sessions.get("alice") is not None

    def test_chatter_without_state_ignored(self, dispatcher, linked):
        before = len(dispatcher.adapter.sent)
        send(dispatcher, "dave", "yes")
        assert len(dispatcher.adapter.sent) == before

    def test_solo_expense_auto_confirmed(self, dispatcher, linked, ledger):
        reply = send(dispatcher, "carol", "/ae 250.50 Coffee")
        assert "confirmed automatically" in reply
        expense = ledger().list_expenses(linked.id)[0]
        assert expense.amount == 25050
        assert expense.status is ExpenseStatus.CONFIRMED

    def test_addexpense_usage(self, dispatcher, linked):
        assert "Usage: /addexpense" in send(dispatcher, "carol", "/addexpense")

    def test_ledger_error_is_reported(self, dispatcher, linked):
        assert send(dispatcher, "carol", "/ae 0 Nothing") == "❌ Amount must be positive"

    def test_sender_required(self, dispatcher, linked):
        assert "Could not identify you" in send(dispatcher, None, "/ae 100 Taxi")

    def test_bulk_approve(self, dispatcher, linked, ledger):
        add_snacks(dispatcher)
        send(dispatcher, "carol", "/ae 120 Water @alice @bob")
        reply = send(dispatcher, "alice", "/approve")
        assert "You approved 2 expense(s). Waiting for more approvals" in reply
        reply = send(dispatcher, "bob", "/approve")
        assert "2 expense(s) now confirmed" in reply
        statuses = {e.status for e in ledger().list_expenses(linked.id)}
        assert statuses == {ExpenseStatus.CONFIRMED}

    def test_bulk_reject(self, dispatcher, linked, ledger):
        add_snacks(dispatcher)
        assert "You rejected 1 expense(s)" in send(dispatcher, "bob", "/reject")
        assert ledger().list_expenses(linked.id)[0].status is ExpenseStatus.REJECTED

    def test_bulk_vote_nothing_pending(self, dispatcher, linked):
        assert "No pending expenses" in send(dispatcher, "alice", "/approve")

    def test_expired_vote_prompt_ignored(self, adapter, extractor, session_factory, linked, ledger):
        now = [0.0]
        dispatcher = CommandDispatcher(
            adapter,
            SessionStore(ttl_seconds=1800, clock=lambda: now[0]),
            session_factory,
            receipt_extractor_factory=lambda: extractor,
        )
        add_snacks(dispatcher)
        now[0] += 1800
        before = len(adapter.sent)
        send(dispatcher, "alice", "yes")
        assert len(adapter.sent) == before
        assert ledger().list_expenses(linked.id)[0].votes == {}


class TestReceipts:
    def test_clear_receipt_creates_expense(self, dispatcher, extractor, linked, ledger):
        extractor.result = ReceiptExtractionResult(
            description="Toit dinner",
            candidates=[AmountCandidate(amount=1250.5, label="Grand Total")],
            confidence=0.92,
        )
        reply = send(dispatcher, "carol", "/addexpense Dinner @alice", photo="file-1")
        assert "Invoice processed successfully!" in reply
        expense = ledger().list_expenses(linked.id)[0]
        assert expense.amount == 125050
        assert expense.description == "Dinner"
        assert expense.split_among == ["carol", "alice"]

    def test_photo_needs_mentions(self, dispatcher, extractor, linked):
        reply = send(dispatcher, "carol", "/addexpense Dinner", photo="file-1")
        assert "Please mention participants" in reply
        assert extractor.calls == 0

    def test_photo_without_command_ignored(self, dispatcher, extractor, linked):
        before = len(dispatcher.adapter.sent)
        send(dispatcher, "carol", "look at this view", photo="file-1")
        assert len(dispatcher.adapter.sent) == before

    def test_unclear_receipt_manual_entry(self, dispatcher, extractor, linked, ledger):
        """Amount, then description, then confirm."""
        extractor.result = ReceiptExtractionResult(confidence=0.2)
        assert "enter the expense amount" in send(dispatcher, "carol", "/addexpense @alice", photo="file-1")
        assert "valid amount" in send(dispatcher, "carol", "abc")
        assert "enter a description" in send(dispatcher, "carol", "1,200")
        assert "more detailed description" in send(dispatcher, "carol", "ab")
        reply = send(dispatcher, "carol", "Team lunch")
        assert "Amount: ₹1,200.00" in reply
        assert "Split among: @carol, @alice" in reply
        assert "Expense created manually!" in send(dispatcher, "carol", "confirm")

        expense = ledger().list_expenses(linked.id)[0]
        assert (expense.amount, expense.description) == (120000, "Team lunch")
        assert dispatcher.sessions.get("alice").expense_id == expense.id

    def test_amount_selection_then_cancel(self, dispatcher, extractor, linked, ledger):
        extractor.result = ReceiptExtractionResult(
            description="Toit dinner",
            candidates=[AmountCandidate(amount=1250.5), AmountCandidate(amount=1100)],
            confidence=0.5,
        )
        reply = send(dispatcher, "carol", "/addexpense @alice", photo="file-1")
        assert "1. ₹1,250.50" in reply
        assert "2. ₹1,100.00" in reply
        assert "Which amount" in reply

        reply = send(dispatcher, "carol", "2")
        assert "Amount: ₹1,100.00" in reply
        assert "Description: Toit dinner" in reply
        assert "Please type confirm" in send(dispatcher, "carol", "sure")
        assert "cancelled" in send(dispatcher, "carol", "cancel")
        assert ledger().list_expenses(linked.id) == []

    def test_extractor_failure_falls_back(self, dispatcher, extractor, linked):
        extractor.error = RuntimeError("model unavailable")
        reply = send(dispatcher, "carol", "/addexpense Dinner @alice", photo="file-1")
        assert "enter the expense amount" in reply
        assert dispatcher.sessions.get("carol").description == "Dinner"

    def test_unexpected_error_generic_reply(self, dispatcher, adapter, linked):
        adapter.fail_downloads = True
        reply = send(dispatcher, "carol", "/addexpense Dinner @alice", photo="file-1")
        assert reply == "❌ Something went wrong. Please try again."


class TestPaymentsAndClose:
    def test_full_settlement_flow(self, dispatcher, linked, ledger):
        add_snacks(dispatcher)
        send(dispatcher, "alice", "yes")
        send(dispatcher, "bob", "ok")

        assert "Total Confirmed Expenses: ₹300.00" in send(dispatcher, "bob", "/summary")
        reply = send(dispatcher, "carol", "/closeevent")
        assert "Cannot close event" in reply
        assert "unsettled balances remain" in reply
        assert "@alice owes @carol ₹100.00" in reply

        reply = send(dispatcher, "alice", "/paid @carol 100")
        assert "Payment of ₹100.00 recorded from @alice to @carol" in reply
        assert "pending payments need confirmation" in send(dispatcher, "carol", "/closeevent")

        reply = send(dispatcher, "bob", "/confirmpayment @alice 100")
        assert reply == "❌ No pending payment found matching these details"
        assert "confirmed" in send(dispatcher, "carol", "/confirmpayment @alice 100")
        send(dispatcher, "bob", "/paid @carol 100")
        send(dispatcher, "carol", "/confirmpayment @bob 100")

        reply = send(dispatcher, "alice", "/report")
        assert "• Snacks: ₹300.00 (by @carol)" in reply
        assert "@alice → @carol ₹100.00" in reply
        assert "All settled! ✅" in reply

        assert "Event Closed!" in send(dispatcher, "carol", "/closeevent")
        assert ledger().get_event(linked.id).status is EventStatus.CLOSED
        assert "Event is closed" in send(dispatcher, "alice", "/ae 50 Late snack")
        assert send(dispatcher, "carol", "/closeevent") == "Event is already closed."

        payments = ledger().list_payments(linked.id, PaymentStatus.CONFIRMED)
        assert len(payments) == 2

    def test_paid_usage(self, dispatcher, linked):
        assert "Usage: /paid" in send(dispatcher, "alice", "/paid carol")


class TestReplyTransactions:
    """Replies are sent only once the ledger session holds no transaction."""

    @pytest.fixture
    def watched(self, adapter, extractor, session_factory):
        opened = []
        seen = []

        def open_session():
            db = session_factory()
            opened.append(db)
            return db

        send_message = adapter.send_message

        async def watch(chat_id, text):
            seen.append((text, opened[-1].in_transaction()))
            await send_message(chat_id, text)

        adapter.send_message = watch
        dispatcher = CommandDispatcher(
            adapter,
            SessionStore(ttl_seconds=1800),
            open_session,
            receipt_extractor_factory=lambda: extractor,
            policy="majority",
            tolerance=1,
        )
        dispatcher.attach()
        yield dispatcher, seen
        dispatcher.detach()

    def test_refused_expense(self, watched, event, service):
        dispatcher, seen = watched
        send(dispatcher, "carol", "/startevent GOA123")
        assert service.close_event(event.id).closed

        reply = send(dispatcher, "alice", "/ae 50 Late snack")
        assert "Event is closed" in reply
        assert seen[-1] == (reply, False)

    def test_blocked_close(self, watched, event):
        dispatcher, seen = watched
        send(dispatcher, "carol", "/startevent GOA123")
        add_snacks(dispatcher)

        reply = send(dispatcher, "carol", "/closeevent")
        assert "Cannot close event" in reply
        assert seen[-1] == (reply, False)

    def test_unexpected_error(self, watched, adapter, event):
        dispatcher, seen = watched
        send(dispatcher, "carol", "/startevent GOA123")
        adapter.fail_downloads = True

        reply = send(dispatcher, "carol", "/addexpense Dinner @alice", photo="file-1")
        assert reply == "❌ Something went wrong. Please try again."
        assert seen[-1] == (reply, False)
