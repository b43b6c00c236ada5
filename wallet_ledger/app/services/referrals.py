from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..core.config import Settings
from ..core.errors import NotEligibleError, ValidationError
from ..models import (
    ReferralCountResponse,
    RewardEligibility,
    RewardType,
    TransactionKind,
    TransactionModel,
    TransactionStatus,
)
from ..models.schemas import ReferralRewardDetails
from .catalog import find_data_plan
from .repository import LedgerRepository, new_internal_reference


logger = logging.getLogger(__name__)


@dataclass
class ClaimResult:
    claimed: bool
    message: str
    transaction: Optional[TransactionModel] = None


class ReferralService:
    """Referral counters and the one-time milestone reward."""

    def __init__(
        self,
        session: Session,
        settings: Settings,
        repository: Optional[LedgerRepository] = None,
    ) -> None:
        self.session = session
        self.settings = settings
        self.repository = repository or LedgerRepository(session)

    def evaluate_eligibility(self, account_id: UUID) -> RewardEligibility:
        account = self.repository.require_account(account_id)
        enabled = self.settings.referral_reward_enabled
        required = self.settings.referral_reward_count
        return RewardEligibility(
            enabled=enabled,
            eligible=enabled and account.total_referrals >= required,
            required_count=required,
            current_count=account.total_referrals,
        )

    def _reward_value(
        self, reward_type: RewardType, network: Optional[str]
    ) -> tuple[int, ReferralRewardDetails]:
        if reward_type is RewardType.DATA_BUNDLE:
            network = network or self.settings.referral_reward_network
            plan = find_data_plan(network, self.settings.referral_reward_data_size)
            if plan is None:
                raise ValidationError(
                    f"No {self.settings.referral_reward_data_size} data plan on {network}"
                )
            return plan.price, ReferralRewardDetails(
                reward_type=reward_type,
                data_size=plan.size,
                network=network,
                note=f"Referral reward: {plan.size} {network.upper()} data bundle value",
            )
        if reward_type is RewardType.AIRTIME:
            return self.settings.referral_reward_airtime_amount, ReferralRewardDetails(
                reward_type=reward_type,
                network=network,
                note="Referral reward: airtime value",
            )
        return self.settings.referral_reward_cash_amount, ReferralRewardDetails(
            reward_type=reward_type,
            note="Referral reward: wallet credit",
        )

    def claim_reward(
        self,
        account_id: UUID,
        reward_type: RewardType,
        network: Optional[str] = None,
    ) -> ClaimResult:
        """Pay the milestone reward at most once per account and reward type.

        Losing a race against a concurrent claim rolls the whole unit of work
        back and reports the reward as already claimed.
        """
        reward_type = RewardType(reward_type)
        if self.repository.get_referral_claim(account_id, reward_type.value) is not None:
            return ClaimResult(claimed=False, message="Reward already claimed")

        eligibility = self.evaluate_eligibility(account_id)
        if not eligibility.eligible:
            if not eligibility.enabled:
                raise NotEligibleError("Referral rewards are currently disabled")
            raise NotEligibleError(
                f"You need {eligibility.required_count} referrals to claim this reward; "
                f"you have {eligibility.current_count}"
            )

        amount, details = self._reward_value(reward_type, network)
        try:
            account = self.repository.credit_account(account_id, amount)
            self.repository.add_referral_earnings(account_id, amount)
            transaction = self.repository.record_transaction(
                TransactionModel(
                    account_id=account_id,
                    kind=TransactionKind.REFERRAL_REWARD.value,
                    amount=amount,
                    status=TransactionStatus.SUCCESS.value,
                    internal_reference=new_internal_reference(),
                    details=details.model_dump(mode="json"),
                )
            )
            self.repository.add_referral_claim(
                account_id=account_id,
                reward_type=reward_type.value,
                details=details.model_dump(mode="json"),
                transaction_id=transaction.id,
            )
            self.repository.add_audit_log(
                "referral_reward_claimed",
                account_id=account_id,
                details={
                    "reward_type": reward_type.value,
                    "amount": amount,
                    "transaction_id": str(transaction.id),
                    "new_balance": account.balance,
                },
            )
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            logger.info(
                "referral.claim_race",
                extra={"account_id": str(account_id), "reward_type": reward_type.value},
            )
            return ClaimResult(claimed=False, message="Reward already claimed")

        self.session.refresh(transaction)
        logger.info(
            "referral.reward_claimed",
            extra={
                "account_id": str(account_id),
                "reward_type": reward_type.value,
                "amount": amount,
            },
        )
        return ClaimResult(
            claimed=True,
            message="Referral reward claimed successfully",
            transaction=transaction,
        )

    def record_referral(
        self,
        referrer_id: UUID,
        referred_user_id: UUID,
        referred_user_name: Optional[str] = None,
        referral_code: Optional[str] = None,
    ) -> ReferralCountResponse:
        if referrer_id == referred_user_id:
            raise ValidationError("An account cannot refer itself")
        referrer = self.repository.require_account(referrer_id)
        if referral_code and referral_code != referrer.referral_code:
            raise ValidationError("Referral code does not belong to the referrer")

        referred = self.repository.get_account(referred_user_id)
        if referred is None:
            raise ValidationError("Referred account does not exist")

        cap = self.settings.referral_invite_cap
        if not self.repository.mark_referral_counted(referred_user_id, referrer_id):
            referred = self.repository.reload_account(referred_user_id)
            if referred.referred_by != referrer_id:
                raise ValidationError("Referred account was already referred by another account")
            total = self.repository.reload_account(referrer_id).total_referrals
            return ReferralCountResponse(
                success=True,
                message="Referral already counted",
                new_total_referrals=total,
                limit_reached=total >= cap,
            )

        new_total = self.repository.increment_referrals(referrer_id, cap)
        if new_total is None:
            self.session.rollback()
            logger.info(
                "referral.invite_cap_reached",
                extra={"account_id": str(referrer_id), "cap": cap},
            )
            return ReferralCountResponse(
                success=False,
                message=f"Referral limit of {cap} reached",
                new_total_referrals=cap,
                limit_reached=True,
            )

        self.repository.add_audit_log(
            "update_referral_count",
            account_id=referrer_id,
            details={
                "referred_user_id": str(referred_user_id),
                "referred_user_name": referred_user_name,
                "referral_code": referral_code,
                "new_total_referrals": new_total,
            },
        )
        self.session.commit()
        logger.info(
            "referral.counted",
            extra={"account_id": str(referrer_id), "total_referrals": new_total},
        )
        return ReferralCountResponse(
            success=True,
            message="Referral count updated",
            new_total_referrals=new_total,
            limit_reached=new_total >= cap,
        )
