from .user import User
from .subscription import Subscription
from .feature_flag import FeatureFlag, UserFeatureOverride
from .admin_audit_log import AdminAuditLog
from .onboarding_state import OnboardingState
from .user_integration import UserIntegration
from .artifact import Artifact
