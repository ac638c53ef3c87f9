from agentstore.models.publisher import Publisher
from agentstore.models.agent import Agent, AgentType, PricingModel
from agentstore.models.entitlement import Entitlement, ConfirmationStatus
from agentstore.models.transaction import Transaction, TransactionStatus
