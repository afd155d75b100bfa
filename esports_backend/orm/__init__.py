from .base import Base

from .tournament import Tournament, TournamentStatusLog, TournamentStatus, TournamentMode
from .team import Team, TeamMember, Registration, RegistrationStatus
from .room import Room, RoomAssignment, RoomStatus
from .prize import PrizeDistribution, PrizePayout
from .wallet import Wallet, WalletTransaction, TransactionType
