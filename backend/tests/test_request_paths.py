"""Request path tests: the synchronous flows that attach metadata for the webhooks"""
from decimal import Decimal
from unittest.mock import Mock

import pytest
import stripe as stripe_sdk

from eventhub.models.enums import StripeAccountStatus, SubscriptionStatus, TransactionStatus, TransactionType
from eventhub.models.event_attendee import EventAttendee
from eventhub.models.platform_subscription import PlatformSubscription
from eventhub.models.stripe_price import StripePrice
from eventhub.models.stripe_product import StripeProduct
from eventhub.models.subscription import Subscription
from eventhub.models.transaction import Transaction
from eventhub.models.user import User
from conftest import make_event


@pytest.mark.high
class TestTicketPaymentIntents:

    def test_create_routes_subtotal_to_host(self, login_as, buyer_user, paid_event, auto_mock_stripe):
        client = login_as(buyer_user)
        response = client.post("/api/stripe/payment-intent", json={
            "event_id": paid_event.id, "total": "52.50", "subtotal": "50.00",
        })

        assert response.status_code == 200
        assert response.json()["client_secret"] == "pi_test123_secret"
        kwargs = auto_mock_stripe.PaymentIntent.create.call_args.kwargs
        assert kwargs["amount"] == 5250
        assert kwargs["transfer_data"] == {"amount": 5000, "destination": "acct_host123"}
        assert kwargs["metadata"]["event_id"] == paid_event.id
        assert kwargs["metadata"]["user_id"] == buyer_user.id

    def test_total_below_subtotal_rejected(self, login_as, buyer_user, paid_event, auto_mock_stripe):
        client = login_as(buyer_user)
        response = client.post("/api/stripe/payment-intent", json={
            "event_id": paid_event.id, "total": "40.00", "subtotal": "50.00",
        })
        assert response.status_code == 400
        auto_mock_stripe.PaymentIntent.create.assert_not_called()

    def test_host_without_active_account_rejected(self, login_as, db_session, buyer_user, paid_event, host_user):
        host_user.stripe_account_status = StripeAccountStatus.ACTION_REQUIRED.value
        db_session.commit()

        client = login_as(buyer_user)
        response = client.post("/api/stripe/payment-intent", json={
            "event_id": paid_event.id, "total": "50.00", "subtotal": "50.00",
        })
        assert response.status_code == 400

    def test_missing_event(self, login_as, buyer_user):
        client = login_as(buyer_user)
        response = client.post("/api/stripe/payment-intent", json={
            "event_id": "missing", "total": "50.00", "subtotal": "50.00",
        })
        assert response.status_code == 404

    def test_update_changes_amounts(self, login_as, buyer_user, paid_event, auto_mock_stripe):
        auto_mock_stripe.PaymentIntent.retrieve.return_value = {
            "id": "pi_test123", "metadata": {"event_id": paid_event.id, "user_id": buyer_user.id},
        }
        auto_mock_stripe.PaymentIntent.modify = Mock(return_value={"id": "pi_test123", "amount": 7500})
        client = login_as(buyer_user)
        response = client.put("/api/stripe/payment-intent/pi_test123", json={
            "event_id": paid_event.id, "total": "75.00", "subtotal": "70.00",
        })

        assert response.status_code == 200
        args, kwargs = auto_mock_stripe.PaymentIntent.modify.call_args
        assert args[0] == "pi_test123"
        assert kwargs["amount"] == 7500
        assert kwargs["transfer_data"] == {"amount": 7000}

    def test_update_of_another_buyers_intent_forbidden(
        self, login_as, db_session, buyer_user, paid_event, auto_mock_stripe
    ):
        """The metadata user_id decides who owns the recorded transaction, so it cannot be rewritten"""
        intruder = User(email="delivered+intruder@resend.dev", name="Intruder")
        db_session.add(intruder)
        db_session.commit()
        auto_mock_stripe.PaymentIntent.retrieve.return_value = {
            "id": "pi_test123", "metadata": {"event_id": paid_event.id, "user_id": buyer_user.id},
        }
        auto_mock_stripe.PaymentIntent.modify = Mock()

        response = login_as(intruder).put("/api/stripe/payment-intent/pi_test123", json={
            "event_id": paid_event.id, "total": "1.00", "subtotal": "1.00",
        })

        assert response.status_code == 403
        auto_mock_stripe.PaymentIntent.modify.assert_not_called()

    def test_update_of_intent_without_buyer_metadata_forbidden(self, login_as, buyer_user, paid_event, auto_mock_stripe):
        auto_mock_stripe.PaymentIntent.modify = Mock()

        response = login_as(buyer_user).put("/api/stripe/payment-intent/pi_test123", json={
            "event_id": paid_event.id, "total": "50.00", "subtotal": "50.00",
        })

        assert response.status_code == 403
        auto_mock_stripe.PaymentIntent.modify.assert_not_called()

    def test_gateway_failure_is_502(self, login_as, buyer_user, paid_event, auto_mock_stripe):
        auto_mock_stripe.PaymentIntent.create.side_effect = stripe_sdk.StripeError("card network down")
        client = login_as(buyer_user)
        response = client.post("/api/stripe/payment-intent", json={
            "event_id": paid_event.id, "total": "50.00", "subtotal": "50.00",
        })
        assert response.status_code == 502


@pytest.mark.high
class TestConnectOnboarding:

    def test_first_call_creates_account(self, login_as, db_session, buyer_user, auto_mock_stripe):
        auto_mock_stripe.Account.create = Mock(return_value={"id": "acct_new123"})
        auto_mock_stripe.AccountLink.create = Mock(return_value={"url": "https://connect.stripe.com/setup/x"})

        response = login_as(buyer_user).post("/api/stripe/account")

        assert response.status_code == 200
        assert response.json() == {"account_id": "acct_new123", "url": "https://connect.stripe.com/setup/x"}
        assert auto_mock_stripe.Account.create.call_args.kwargs["metadata"] == {"userId": buyer_user.id}
        db_session.expire_all()
        user = db_session.query(User).filter(User.id == buyer_user.id).first()
        assert user.stripe_account_status == StripeAccountStatus.PENDING_VERIFICATION.value

    def test_existing_account_reused(self, login_as, host_user, auto_mock_stripe):
        auto_mock_stripe.AccountLink.create = Mock(return_value={"url": "https://connect.stripe.com/setup/y"})

        response = login_as(host_user).post("/api/stripe/account")

        assert response.status_code == 200
        auto_mock_stripe.Account.create.assert_not_called()
        assert auto_mock_stripe.AccountLink.create.call_args.kwargs["account"] == "acct_host123"

    def test_dashboard_requires_active_account(self, login_as, buyer_user):
        response = login_as(buyer_user).get("/api/stripe/dashboard")
        assert response.status_code == 400

    def test_dashboard_link(self, login_as, host_user, auto_mock_stripe):
        auto_mock_stripe.Account.create_login_link = Mock(return_value={"url": "https://connect.stripe.com/express/z"})
        response = login_as(host_user).get("/api/stripe/dashboard")
        assert response.status_code == 200
        assert response.json()["url"] == "https://connect.stripe.com/express/z"


@pytest.mark.high
class TestCreatorSubscriptions:

    def test_payment_intent_carries_round_trip_metadata(
        self, login_as, db_session, buyer_user, creator_plan, auto_mock_stripe
    ):
        product, price = creator_plan
        auto_mock_stripe.Subscription.create = Mock(return_value={
            "id": "sub_new123",
            "status": "incomplete",
            "latest_invoice": {"confirmation_secret": {"client_secret": "seti_secret"}},
        })

        response = login_as(buyer_user).post("/api/subscriptions/payment-intent", json={"price_id": price.id})

        assert response.status_code == 200
        assert response.json() == {
            "stripe_subscription_id": "sub_new123",
            "client_secret": "seti_secret",
            "status": "incomplete",
        }
        kwargs = auto_mock_stripe.Subscription.create.call_args.kwargs
        assert kwargs["metadata"] == {
            "user_id": buyer_user.id,
            "owner_id": product.user_id,
            "price_id": price.id,
            "product_id": product.id,
        }
        assert kwargs["transfer_data"]["destination"] == "acct_host123"
        assert kwargs["transfer_data"]["amount_percent"] == 90
        assert db_session.query(Subscription).count() == 0
        db_session.expire_all()
        assert db_session.query(User).filter(User.id == buyer_user.id).first().stripe_customer_id == "cus_test123"

    def test_self_subscription_rejected(self, login_as, host_user, creator_plan):
        _, price = creator_plan
        response = login_as(host_user).post("/api/subscriptions/payment-intent", json={"price_id": price.id})
        assert response.status_code == 400

    def test_duplicate_active_subscription_rejected(self, login_as, db_session, buyer_user, creator_plan):
        product, price = creator_plan
        db_session.add(Subscription(
            user_id=buyer_user.id, owner_id=product.user_id, product_id=product.id, price_id=price.id,
            stripe_subscription_id="sub_existing", status=SubscriptionStatus.ACTIVE.value,
        ))
        db_session.commit()

        response = login_as(buyer_user).post("/api/subscriptions/payment-intent", json={"price_id": price.id})
        assert response.status_code == 409

    def test_cancel_by_subscriber(self, login_as, db_session, buyer_user, creator_plan, auto_mock_stripe):
        product, price = creator_plan
        subscription = Subscription(
            user_id=buyer_user.id, owner_id=product.user_id, product_id=product.id, price_id=price.id,
            stripe_subscription_id="sub_cancel_me", status=SubscriptionStatus.ACTIVE.value,
        )
        db_session.add(subscription)
        db_session.commit()

        response = login_as(buyer_user).post(f"/api/subscriptions/{subscription.id}/cancel")

        assert response.status_code == 200
        body = response.json()["subscription"]
        assert body["cancel_at_end_date"] is True
        assert body["canceled_at"] is not None
        # Status only changes when Stripe reports it
        assert body["status"] == SubscriptionStatus.ACTIVE.value
        auto_mock_stripe.Subscription.modify.assert_called_once_with("sub_cancel_me", cancel_at_period_end=True)

    def test_cancel_by_stranger_forbidden(self, login_as, db_session, buyer_user, host_user, creator_plan):
        product, price = creator_plan
        stranger = User(email="delivered+stranger@resend.dev", name="Stranger")
        db_session.add(stranger)
        subscription = Subscription(
            user_id=buyer_user.id, owner_id=product.user_id, product_id=product.id, price_id=price.id,
            stripe_subscription_id="sub_not_yours", status=SubscriptionStatus.ACTIVE.value,
        )
        db_session.add(subscription)
        db_session.commit()

        response = login_as(stranger).post(f"/api/subscriptions/{subscription.id}/cancel")
        assert response.status_code == 403

    def test_cancel_twice_is_noop(self, login_as, db_session, buyer_user, creator_plan, auto_mock_stripe):
        product, price = creator_plan
        subscription = Subscription(
            user_id=buyer_user.id, owner_id=product.user_id, product_id=product.id, price_id=price.id,
            stripe_subscription_id="sub_twice", status=SubscriptionStatus.ACTIVE.value,
        )
        db_session.add(subscription)
        db_session.commit()

        client = login_as(buyer_user)
        client.post(f"/api/subscriptions/{subscription.id}/cancel")
        client.post(f"/api/subscriptions/{subscription.id}/cancel")

        assert auto_mock_stripe.Subscription.modify.call_count == 1


@pytest.mark.high
class TestPlatformSubscriptions:

    def test_checkout_marks_platform_metadata(self, login_as, buyer_user, platform_plan, auto_mock_stripe):
        _, price = platform_plan
        auto_mock_stripe.checkout.Session.create = Mock(return_value={
            "id": "cs_test123", "url": "https://checkout.stripe.com/c/pay/cs_test123",
        })

        response = login_as(buyer_user).post("/api/platform-subscriptions/checkout", json={"price_id": price.id})

        assert response.status_code == 200
        assert response.json()["url"] == "https://checkout.stripe.com/c/pay/cs_test123"
        kwargs = auto_mock_stripe.checkout.Session.create.call_args.kwargs
        assert kwargs["mode"] == "subscription"
        assert kwargs["subscription_data"]["metadata"] == {
            "user_id": buyer_user.id, "price_id": price.id, "is_platform": "true",
        }

    def test_checkout_unknown_price(self, login_as, buyer_user):
        response = login_as(buyer_user).post("/api/platform-subscriptions/checkout", json={"price_id": "nope"})
        assert response.status_code == 404

    def test_cancel_owner_only(self, login_as, db_session, buyer_user, host_user, platform_plan, auto_mock_stripe):
        _, price = platform_plan
        subscription = PlatformSubscription(
            user_id=buyer_user.id,
            platform_stripe_product_id=price.platform_stripe_product_id,
            platform_stripe_price_id=price.id,
            stripe_subscription_id="sub_platform_cancel",
            status=SubscriptionStatus.ACTIVE.value,
        )
        db_session.add(subscription)
        db_session.commit()

        assert login_as(host_user).post(f"/api/platform-subscriptions/{subscription.id}/cancel").status_code == 403

        response = login_as(buyer_user).post(f"/api/platform-subscriptions/{subscription.id}/cancel")
        assert response.status_code == 200
        assert response.json()["subscription"]["cancel_at_end_date"] is True


@pytest.mark.critical
class TestCreatorProducts:

    def test_create_product_writes_mirrors(self, login_as, db_session, host_user, auto_mock_stripe):
        auto_mock_stripe.Product.create = Mock(return_value={"id": "prod_new123"})
        auto_mock_stripe.Price.create = Mock(return_value={"id": "price_new123", "currency": "usd"})

        response = login_as(host_user).post("/api/stripe-products", json={
            "name": "Members Club", "amount": "15.00", "interval": "month",
        })

        assert response.status_code == 201
        product = response.json()["product"]
        assert product["stripe_product_id"] == "prod_new123"
        assert product["prices"][0]["stripe_price_id"] == "price_new123"
        assert db_session.query(StripeProduct).filter(StripeProduct.stripe_product_id == "prod_new123").count() == 1
        assert auto_mock_stripe.Price.create.call_args.kwargs["unit_amount"] == 1500

    def test_create_product_requires_active_account(self, login_as, buyer_user):
        response = login_as(buyer_user).post("/api/stripe-products", json={"name": "Nope", "amount": "5.00"})
        assert response.status_code == 400

    def test_delete_cascade_survives_gateway_failures(
        self, login_as, db_session, host_user, buyer_user, creator_plan, auto_mock_stripe
    ):
        """Archive and one cancellation fail; the local delete and the other cancellation still happen"""
        product, price = creator_plan
        second_subscriber = User(email="delivered+second@resend.dev", name="Second")
        db_session.add(second_subscriber)
        db_session.flush()
        failing = Subscription(
            user_id=buyer_user.id, owner_id=host_user.id, product_id=product.id, price_id=price.id,
            stripe_subscription_id="sub_fails", status=SubscriptionStatus.ACTIVE.value,
        )
        working = Subscription(
            user_id=second_subscriber.id, owner_id=host_user.id, product_id=product.id, price_id=price.id,
            stripe_subscription_id="sub_works", status=SubscriptionStatus.ACTIVE.value,
        )
        db_session.add_all([failing, working])
        db_session.commit()

        auto_mock_stripe.Product.modify = Mock(side_effect=stripe_sdk.StripeError("archive failed"))

        def modify_subscription(subscription_id, **kwargs):
            if subscription_id == "sub_fails":
                raise stripe_sdk.StripeError("cancel failed")
            return {"id": subscription_id, "cancel_at_period_end": True}

        auto_mock_stripe.Subscription.modify = Mock(side_effect=modify_subscription)

        response = login_as(host_user).delete(f"/api/stripe-products/{product.id}")

        assert response.status_code == 200
        db_session.expire_all()
        assert db_session.query(StripeProduct).one().is_deleted is True
        assert db_session.query(StripePrice).one().is_deleted is True
        by_id = {s.stripe_subscription_id: s for s in db_session.query(Subscription).all()}
        assert by_id["sub_works"].cancel_at_end_date is True
        assert by_id["sub_works"].canceled_at is not None
        assert by_id["sub_fails"].cancel_at_end_date is False
        assert auto_mock_stripe.Subscription.modify.call_count == 2

    def test_delete_by_non_owner_forbidden(self, login_as, buyer_user, creator_plan):
        product, _ = creator_plan
        response = login_as(buyer_user).delete(f"/api/stripe-products/{product.id}")
        assert response.status_code == 403


@pytest.mark.high
class TestAttendeeRefunds:

    def _paid_attendee(self, db_session, paid_event, buyer_user):
        transaction = Transaction(
            type=TransactionType.EVENT.value,
            stripe_payment_intent_id="pi_refund_me",
            amount=Decimal("50.00"),
            currency="usd",
            status=TransactionStatus.SUCCEEDED.value,
            user_id=buyer_user.id,
            event_id=paid_event.id,
        )
        db_session.add(transaction)
        db_session.flush()
        attendee = EventAttendee(
            event_id=paid_event.id, user_id=buyer_user.id, amount_paid=Decimal("25.00"),
            payment_status="succeeded", transaction_id=transaction.id,
        )
        db_session.add(attendee)
        db_session.commit()
        return attendee

    def test_host_refunds_attendee(self, login_as, db_session, host_user, buyer_user, paid_event, auto_mock_stripe):
        attendee = self._paid_attendee(db_session, paid_event, buyer_user)
        auto_mock_stripe.Refund.create = Mock(return_value={"id": "re_123"})

        response = login_as(host_user).post(f"/api/event-attendees/{attendee.id}/refund")

        assert response.status_code == 200
        assert response.json()["attendee"]["payment_status"] == "refunded"
        kwargs = auto_mock_stripe.Refund.create.call_args.kwargs
        assert kwargs["payment_intent"] == "pi_refund_me"
        assert kwargs["amount"] == 2500
        # The transaction flips when charge.refunded arrives
        db_session.expire_all()
        assert db_session.query(Transaction).one().status == TransactionStatus.SUCCEEDED.value

    def test_non_host_forbidden(self, login_as, db_session, buyer_user, paid_event):
        attendee = self._paid_attendee(db_session, paid_event, buyer_user)
        response = login_as(buyer_user).post(f"/api/event-attendees/{attendee.id}/refund")
        assert response.status_code == 403

    def test_refund_twice_conflicts(self, login_as, db_session, host_user, buyer_user, paid_event, auto_mock_stripe):
        attendee = self._paid_attendee(db_session, paid_event, buyer_user)
        auto_mock_stripe.Refund.create = Mock(return_value={"id": "re_123"})
        client = login_as(host_user)

        assert client.post(f"/api/event-attendees/{attendee.id}/refund").status_code == 200
        assert client.post(f"/api/event-attendees/{attendee.id}/refund").status_code == 409

    def test_sibling_ticket_refundable_after_partial_refund(
        self, login_as, post_webhook, db_session, host_user, buyer_user, paid_event, auto_mock_stripe
    ):
        """A partial charge.refunded flips the shared transaction; the other ticket stays refundable"""
        transaction = Transaction(
            type=TransactionType.EVENT.value,
            stripe_payment_intent_id="pi_multi",
            amount=Decimal("50.00"),
            currency="usd",
            status=TransactionStatus.SUCCEEDED.value,
            user_id=buyer_user.id,
            event_id=paid_event.id,
        )
        db_session.add(transaction)
        db_session.flush()
        first, second = [
            EventAttendee(
                event_id=paid_event.id, user_id=buyer_user.id, name=name, amount_paid=Decimal("25.00"),
                payment_status="succeeded", transaction_id=transaction.id,
            )
            for name in ("Guest A", "Guest B")
        ]
        db_session.add_all([first, second])
        db_session.commit()
        first_id, second_id = first.id, second.id
        auto_mock_stripe.Refund.create = Mock(return_value={"id": "re_multi"})
        client = login_as(host_user)

        assert client.post(f"/api/event-attendees/{first_id}/refund").status_code == 200

        refund_event = make_event("charge.refunded", {
            "id": "ch_multi",
            "object": "charge",
            "payment_intent": "pi_multi",
            "amount": 5000,
            "amount_refunded": 2500,
        })
        assert post_webhook(refund_event).status_code == 200

        response = client.post(f"/api/event-attendees/{second_id}/refund")

        assert response.status_code == 200
        assert response.json()["attendee"]["payment_status"] == "refunded"
        assert auto_mock_stripe.Refund.create.call_count == 2
        db_session.expire_all()
        assert db_session.query(Transaction).one().status == TransactionStatus.REFUNDED.value

    def test_unpaid_attendee_not_refundable(self, login_as, db_session, host_user, buyer_user, paid_event):
        attendee = EventAttendee(event_id=paid_event.id, user_id=buyer_user.id, amount_paid=Decimal("0"))
        db_session.add(attendee)
        db_session.commit()

        response = login_as(host_user).post(f"/api/event-attendees/{attendee.id}/refund")
        assert response.status_code == 400
