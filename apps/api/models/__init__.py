"""Models package."""

from .user import User
from .credit_balance import CreditBalance
from .credit_transaction import CreditTransaction
from .credit_package import CreditPackage
from .payment import Payment
from .notification import Notification
from .document_template import DocumentTemplate
from .generated_document import GeneratedDocument
from .student import Student
from .teacher import Teacher
from .library_book import LibraryBook
from .library_loan import LibraryLoan
from .inventory_item import InventoryItem
from .inventory_movement import InventoryMovement
