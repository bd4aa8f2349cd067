from app.models.acumatica import (  # noqa: F401
    AcumaticaCredential,
    AcumaticaCustomer,
    AcumaticaInvoice,
    AcumaticaPayment,
    AcumaticaSession,
    PaymentAttachment,
    PaymentInvoiceApplication,
)
from app.models.sync import (  # noqa: F401
    BackfillProgress,
    SyncChangeLog,
    SyncEntityType,
    SyncLog,
    SyncRunStatus,
    SyncSource,
    SyncStatus,
)
