from rest_framework.throttling import SimpleRateThrottle

class LoginRateThrottle(SimpleRateThrottle):
    """Limits token requests per submitted e-mail address."""
    scope = 'login'
    
    def get_cache_key(self, request, view):
        email = request.data.get('email')

        if not email:
            return None
        
        ident = email.lower().strip()

        return self.cache_format % {
            'scope': self.scope,
            'ident': ident
        }
